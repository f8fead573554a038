from dataclasses import dataclass
from urllib.parse import quote

import requests
from loguru import logger

from ticketbridge.core.config import settings
from ticketbridge.core.errors import TicketingProviderError


@dataclass
class TicketingConfig:
    base_url: str           # e.g. https://api.xs2event.com
    api_key: str            # bearer credential
    timeout: int = 30
    status_timeout: int = 15
    download_timeout: int = 45
    zip_timeout: int = 60


@dataclass
class DownloadedFile:
    content: bytes
    content_type: str | None


class TicketingClient:
    """Authenticated calls to the ticketing provider. Stateless request/response only."""

    def __init__(self, cfg: TicketingConfig):
        self.cfg = cfg
        self.base_url = (cfg.base_url or "").rstrip("/")

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.cfg.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def request(self, method: str, path: str, *, payload: dict | None = None, params: dict | None = None, timeout: int | None = None) -> dict:
        url = f"{self.base_url}{path}"
        try:
            r = requests.request(
                method=method.upper(),
                url=url,
                json=payload,
                params=params,
                headers=self._headers(),
                timeout=timeout or self.cfg.timeout,
            )
        except requests.RequestException as e:
            raise TicketingProviderError(f"Ticketing provider unreachable ({method.upper()} {path}): {e}") from e
        try:
            data = r.json() if r.text else {}
        except ValueError:
            data = {"raw": r.text}
        if r.status_code >= 400:
            logger.warning("Ticketing provider {} {} -> {}: {}", method.upper(), path, r.status_code, data)
            raise TicketingProviderError(
                f"Ticketing provider {r.status_code} on {method.upper()} {path}: {data}",
                status_code=r.status_code,
                body=data,
            )
        return data

    def download(self, url: str, *, timeout: int) -> DownloadedFile:
        """GET a binary file. ``url`` may be absolute (cached zip url) or a provider path."""
        if not url.startswith(("http://", "https://")):
            url = f"{self.base_url}{url}"
        headers = self._headers()
        headers["Accept"] = "*/*"
        try:
            r = requests.get(url, headers=headers, timeout=timeout)
        except requests.RequestException as e:
            raise TicketingProviderError(f"Ticket download failed: {e}") from e
        if r.status_code >= 400:
            raise TicketingProviderError(
                f"Ticket download failed with status {r.status_code}",
                status_code=r.status_code,
                body=r.text[:500],
            )
        return DownloadedFile(content=r.content, content_type=r.headers.get("Content-Type") or None)

    # -------------------------
    # Reservation -> guests -> booking
    # -------------------------
    def create_reservation(self, payload: dict) -> dict:
        return self.request("POST", "/v1/reservations", payload=payload)

    def submit_guests(self, reservation_id: str, guests: list[dict]) -> dict:
        return self.request("POST", f"/v1/reservations/{quote(reservation_id, safe='')}/guests", payload={"guests": guests})

    def create_booking(self, payload: dict) -> dict:
        return self.request("POST", "/v1/bookings", payload=payload)

    def get_booking_status(self, booking_id: str) -> dict:
        return self.request("GET", f"/v1/bookings/{quote(booking_id, safe='')}", timeout=self.cfg.status_timeout)

    # -------------------------
    # E-tickets
    # -------------------------
    def get_tickets(self, booking_id: str) -> dict:
        data = self.request("GET", "/v1/etickets", params={"booking_id": booking_id})
        return {
            "tickets": data.get("tickets") or [],
            "zip_url": data.get("zip_download_url"),
            "checksums": data.get("checksums") or [],
        }

    def get_zip_url(self, booking_id: str) -> dict:
        return self.request("GET", f"/v1/etickets/download/zip/{quote(booking_id, safe='')}", timeout=self.cfg.status_timeout)

    def download_ticket(self, booking_id: str, order_item_id: str, download_token: str) -> DownloadedFile:
        path = (
            f"/v1/etickets/download/{quote(booking_id, safe='')}/{quote(order_item_id, safe='')}"
            f"/url/{quote(download_token, safe='')}"
        )
        return self.download(path, timeout=self.cfg.download_timeout)

    def download_zip(self, zip_url: str) -> DownloadedFile:
        return self.download(zip_url, timeout=self.cfg.zip_timeout)


def ticketing_client_from_settings() -> TicketingClient:
    return TicketingClient(TicketingConfig(
        base_url=settings.TICKETING_BASE_URL,
        api_key=settings.TICKETING_API_KEY,
        timeout=settings.TICKETING_TIMEOUT,
        status_timeout=settings.TICKETING_STATUS_TIMEOUT,
        download_timeout=settings.TICKETING_DOWNLOAD_TIMEOUT,
        zip_timeout=settings.TICKETING_ZIP_TIMEOUT,
    ))
