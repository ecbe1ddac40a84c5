import secrets
from dataclasses import dataclass
from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from sqlalchemy.orm import Session
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from db import get_db
from models.models import ADMIN_RECIPIENT
from schemas.schemas import Token, AdminLogin, DriverLogin
from services.errors import CredentialError
from services.fleet_service import verify_driver_credentials
from config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES, ADMIN_PASSWORD

router = APIRouter(prefix="/auth", tags=["auth"])
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token")

ROLE_ADMIN = "admin"
ROLE_DRIVER = "driver"


@dataclass
class Principal:
    subject: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def driver_id(self) -> int | None:
        return int(self.subject) if self.role == ROLE_DRIVER else None


def create_access_token(data: dict) -> str:
    to_encode = data.copy()
    to_encode["exp"] = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def _token_for(subject: str, role: str) -> dict:
    token = create_access_token({"sub": subject, "role": role})
    return {"access_token": token, "token_type": "bearer", "role": role, "subject": subject}


def verify_admin_password(password: str) -> None:
    if not secrets.compare_digest((password or "").encode(), ADMIN_PASSWORD.encode()):
        raise CredentialError()


async def get_current_user(token: str = Depends(oauth2_scheme)) -> Principal:
    exc = HTTPException(status_code=401, detail="Token inválido ou expirado")
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        subject: str = payload.get("sub")
        role: str = payload.get("role")
        if not subject or role not in (ROLE_ADMIN, ROLE_DRIVER):
            raise exc
    except JWTError:
        raise exc
    return Principal(subject=subject, role=role)


async def require_admin(current_user: Principal = Depends(get_current_user)) -> Principal:
    if not current_user.is_admin:
        raise HTTPException(status_code=403, detail="Apenas o gestor")
    return current_user


def ensure_driver_access(current_user: Principal, driver_id: int | None) -> None:
    """Managers see everything; drivers only their own data."""
    if current_user.is_admin:
        return
    if driver_id is None or current_user.driver_id != driver_id:
        raise HTTPException(status_code=403, detail="Acesso negado")


@router.post("/admin", response_model=Token)
async def admin_login(data: AdminLogin):
    try:
        verify_admin_password(data.password)
    except CredentialError as e:
        raise HTTPException(status_code=401, detail=e.message)
    return _token_for(ADMIN_RECIPIENT, ROLE_ADMIN)


@router.post("/driver", response_model=Token)
async def driver_login(data: DriverLogin, db: Session = Depends(get_db)):
    try:
        driver = verify_driver_credentials(db, data.driver_id, data.password)
    except CredentialError as e:
        raise HTTPException(status_code=401, detail=e.message)
    return _token_for(str(driver.id), ROLE_DRIVER)


@router.post("/token", response_model=Token)
async def login(form: OAuth2PasswordRequestForm = Depends(),
                db: Session = Depends(get_db)):
    """Form login for the interactive docs: username 'admin' or a driver id."""
    try:
        if form.username.lower() == ROLE_ADMIN:
            verify_admin_password(form.password)
            return _token_for(ADMIN_RECIPIENT, ROLE_ADMIN)
        if not form.username.isdigit():
            raise CredentialError()
        driver = verify_driver_credentials(db, int(form.username), form.password)
    except CredentialError as e:
        raise HTTPException(status_code=401, detail=e.message)
    return _token_for(str(driver.id), ROLE_DRIVER)


@router.get("/me")
async def me(current: Principal = Depends(get_current_user)):
    return {"subject": current.subject, "role": current.role}
