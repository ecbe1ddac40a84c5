from typing import Dict, Iterable, Optional
from urllib.parse import quote

GOOGLE_MAPS_DIR = "https://www.google.com/maps/dir/?api=1"


def full_address(address: Optional[str], zip_code: Optional[str]) -> str:
    return f"{address or ''} {zip_code or ''}".strip()


def google_maps_directions(address: str) -> str:
    return f"{GOOGLE_MAPS_DIR}&destination={quote(address, safe='')}"


def waze_navigation(address: str) -> str:
    return f"https://waze.com/ul?q={quote(address, safe='')}&navigate=yes"


def google_maps_pin(lat: float, lng: float) -> str:
    return f"https://www.google.com/maps?q={lat},{lng}"


def whatsapp_message(text: str) -> str:
    return f"https://wa.me/?text={quote(text, safe='')}"


def on_the_way_message(customer_name: str, invoice_number: str) -> str:
    return (f"Olá {customer_name}! Sou o motorista da EntregaCerta e estou a caminho "
            f"com sua entrega (NF {invoice_number}). Por favor, aguarde no local.")


def full_route(addresses: Iterable[str]) -> Optional[str]:
    """Driving directions through every stop; the last address is the destination."""
    stops = [a for a in addresses if a]
    if not stops:
        return None
    destination = stops[-1]
    waypoints = "|".join(stops[:-1])
    return (f"{GOOGLE_MAPS_DIR}&destination={quote(destination, safe='')}"
            f"&waypoints={quote(waypoints, safe='')}&travelmode=driving")


def invoice_links(invoice) -> Dict[str, str]:
    address = full_address(invoice.customer_address, invoice.customer_zip)
    return {
        "google_maps": google_maps_directions(address),
        "waze": waze_navigation(address),
        "whatsapp": whatsapp_message(on_the_way_message(invoice.customer_name, invoice.number)),
    }
