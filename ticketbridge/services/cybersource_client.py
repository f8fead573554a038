import base64
import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from email.utils import format_datetime
from urllib.parse import quote

import requests
from loguru import logger

from ticketbridge.core.config import settings
from ticketbridge.core.errors import RefundProcessorError


@dataclass
class CybersourceConfig:
    host: str               # apitest.cybersource.com OR api.cybersource.com
    merchant_id: str        # v-c-merchant-id header
    key_id: str             # keyid in Signature header
    secret_key_b64: str     # shared secret key (base64-encoded string from Business Center)
    timeout: int = 25


# Processor reason codes -> message safe to show an admin
FRIENDLY_ERRORS = {
    "DUPLICATE_REQUEST": "This payment has already been refunded.",
    "EXCEEDS_AUTH_AMOUNT": "The refund amount exceeds the available balance for this payment.",
    "INVALID_AMOUNT": "The refund amount exceeds the available balance for this payment.",
    "AUTH_ALREADY_REVERSED": "This payment cannot be refunded in its current state.",
    "TRANSACTION_ALREADY_REVERSED_OR_SETTLED": "This payment cannot be refunded in its current state.",
    "NOT_FOUND": "The payment could not be found. It may have been deleted or does not exist.",
    "MISSING_FIELD": "Invalid refund request. Please check the refund details and try again.",
    "INVALID_DATA": "Invalid refund request. Please check the refund details and try again.",
    "SYSTEM_ERROR": "A temporary error occurred with the payment processor. Please try again.",
    "SERVER_TIMEOUT": "A temporary error occurred with the payment processor. Please try again.",
    "PROCESSOR_UNAVAILABLE": "A temporary error occurred with the payment processor. Please try again.",
    "TOO_MANY_REQUESTS": "Too many refund requests. Please wait a moment and try again.",
}


def friendly_error_message(error_code: str | None, original: str) -> str:
    return FRIENDLY_ERRORS.get(error_code or "", f"Refund failed: {original}")


def _sha256_digest_b64(body_bytes: bytes) -> str:
    digest = hashlib.sha256(body_bytes).digest()
    return base64.b64encode(digest).decode("utf-8")

def _hmac_sha256_b64(secret_key: bytes, msg: str) -> str:
    sig = hmac.new(secret_key, msg.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(sig).decode("utf-8")

def _validation_string(method: str, resource: str, host: str, date_str: str, digest_header: str | None, merchant_id: str) -> str:
    # IMPORTANT: newline separated, no trailing newline
    lines = [
        f"host: {host}",
        f"date: {date_str}",
        f"(request-target): {method.lower()} {resource}",
    ]
    if digest_header:
        lines.append(f"digest: {digest_header}")
    lines.append(f"v-c-merchant-id: {merchant_id}")
    return "\n".join(lines)


class CybersourceClient:
    """Refund create / lookup / void against the Cybersource REST API."""

    def __init__(self, cfg: CybersourceConfig):
        self.cfg = cfg
        # Strip whitespace/newlines (e.g. if PEM wrapper was pasted); use only the base64 line(s)
        b64 = (cfg.secret_key_b64 or "").strip().replace("\r", "").replace("\n", "").replace(" ", "")
        self._secret = base64.b64decode(b64)

    def _headers(self, method: str, resource: str, body_bytes: bytes | None) -> dict:
        # Date must be RFC1123
        date_str = format_datetime(datetime.now(timezone.utc), usegmt=True)
        # GET requests are signed without a digest
        digest_header = f"SHA-256={_sha256_digest_b64(body_bytes)}" if body_bytes is not None else None

        vs = _validation_string(method, resource, self.cfg.host, date_str, digest_header, self.cfg.merchant_id)
        signature_b64 = _hmac_sha256_b64(self._secret, vs)
        signed = "host date (request-target) digest v-c-merchant-id" if digest_header else "host date (request-target) v-c-merchant-id"

        signature_header = (
            f'keyid="{self.cfg.key_id}", '
            f'algorithm="HmacSHA256", '
            f'headers="{signed}", '
            f'signature="{signature_b64}"'
        )

        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Host": self.cfg.host,
            "Date": date_str,
            "v-c-merchant-id": self.cfg.merchant_id,
            "Signature": signature_header,
        }
        if digest_header:
            headers["Digest"] = digest_header
        return headers

    def request(self, method: str, path: str, payload: dict | None = None) -> dict:
        body_bytes = None
        if method.upper() != "GET":
            body_bytes = json.dumps(payload or {}, separators=(",", ":")).encode("utf-8")
        headers = self._headers(method, path, body_bytes)
        url = f"https://{self.cfg.host}{path}"
        try:
            r = requests.request(method=method.upper(), url=url, data=body_bytes, headers=headers, timeout=self.cfg.timeout)
        except requests.RequestException as e:
            raise RefundProcessorError(friendly_error_message("SERVER_TIMEOUT", str(e)), error_code="SERVER_TIMEOUT") from e
        try:
            data = r.json() if r.text else {}
        except ValueError:
            data = {"raw": r.text}
        if r.status_code >= 400:
            error_code = data.get("reason") if isinstance(data, dict) else None
            if not error_code and r.status_code == 404:
                error_code = "NOT_FOUND"
            if not error_code and r.status_code == 429:
                error_code = "TOO_MANY_REQUESTS"
            original = (data.get("message") if isinstance(data, dict) else None) or f"HTTP {r.status_code}"
            logger.error("Cybersource {} {} failed: status={} reason={} body={}", method.upper(), path, r.status_code, error_code, data)
            raise RefundProcessorError(
                friendly_error_message(error_code, original),
                error_code=error_code,
                status_code=r.status_code,
                body=data,
            )
        return data

    def create_refund(self, *, payment_ref: str, amount: Decimal, currency: str, reason: str, client_ref: str) -> dict:
        payload = {
            "clientReferenceInformation": {"code": client_ref, "comments": reason[:255]},
            "orderInformation": {"amountDetails": {"totalAmount": f"{Decimal(amount):.2f}", "currency": currency}},
        }
        data = self.request("POST", f"/pts/v2/payments/{quote(payment_ref, safe='')}/refunds", payload)
        return {
            "refund_id": data.get("id"),
            "status": data.get("status"),
            "amount": (data.get("refundAmountDetails") or {}).get("refundAmount") or f"{Decimal(amount):.2f}",
            "currency": (data.get("refundAmountDetails") or {}).get("currency") or currency,
            "raw": data,
        }

    def get_refund(self, refund_id: str) -> dict:
        data = self.request("GET", f"/tss/v2/transactions/{quote(refund_id, safe='')}")
        app_info = data.get("applicationInformation") or {}
        return {
            "refund_id": data.get("id") or refund_id,
            "status": app_info.get("status") or data.get("status"),
            "raw": data,
        }

    def void_refund(self, refund_id: str, *, client_ref: str) -> dict:
        payload = {"clientReferenceInformation": {"code": client_ref}}
        data = self.request("POST", f"/pts/v2/refunds/{quote(refund_id, safe='')}/voids", payload)
        return {"refund_id": refund_id, "status": data.get("status"), "raw": data}


def cybersource_client_from_settings() -> CybersourceClient:
    host = settings.CYBS_HOST or ("apitest.cybersource.com" if settings.CYBS_ENV.lower() == "test" else "api.cybersource.com")
    if not (settings.CYBS_MERCHANT_ID and settings.CYBS_KEY_ID and settings.CYBS_SECRET_KEY_B64):
        raise RefundProcessorError("Cybersource is not configured (missing env vars)", error_code="NOT_CONFIGURED")
    return CybersourceClient(CybersourceConfig(
        host=host,
        merchant_id=settings.CYBS_MERCHANT_ID,
        key_id=settings.CYBS_KEY_ID,
        secret_key_b64=settings.CYBS_SECRET_KEY_B64,
        timeout=settings.CYBS_TIMEOUT,
    ))
