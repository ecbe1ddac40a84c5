import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from db import engine, Base
from models import models  # noqa: F401 (registers all ORM models)
from routers import auth, invoices, drivers, vehicles, notifications, dashboard
from services.errors import EntregaError
from config import CORS_ORIGINS

logging.basicConfig(level=logging.INFO,
                    format="%(asctime)s  %(levelname)s  %(name)s — %(message)s")
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="EntregaCerta",
    description="API de comprovação de entregas: importação de NF-e, rotas de motoristas e comprovantes",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# All API routes live under /api
app.include_router(auth.router, prefix="/api")
app.include_router(invoices.router, prefix="/api")
app.include_router(drivers.router, prefix="/api")
app.include_router(vehicles.router, prefix="/api")
app.include_router(notifications.router, prefix="/api")
app.include_router(dashboard.router, prefix="/api")


@app.exception_handler(EntregaError)
async def domain_error_handler(request: Request, exc: EntregaError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code,
                        content={"detail": exc.message, "error": type(exc).__name__})


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"Erro de banco em {request.method} {request.url.path}")
    return JSONResponse(status_code=500,
                        content={"detail": "Não foi possível concluir a operação. Tente novamente."})


@app.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}
