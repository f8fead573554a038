import base64
import hashlib
import hmac
import json
import re

from fastapi import APIRouter, Depends, HTTPException, Request
from loguru import logger

from ticketbridge.api.deps import get_refund_service
from ticketbridge.core.config import settings
from ticketbridge.core.errors import NotFoundError
from ticketbridge.services.activity_service import log_activity
from ticketbridge.services.refund_log_service import RefundLogService

router = APIRouter(tags=["webhooks"])


def verify_cybs_signature(headers: dict, body: bytes, method: str, path: str, secret_b64: str) -> bool:
    """Check a Cybersource notification's HTTP Signature.

    Validates the SHA-256 body digest and the HMAC-SHA256 over the signed headers.
    Any missing header or malformed value fails verification.
    """
    headers = {k.lower(): v for k, v in headers.items()}
    signature_header = headers.get("signature")
    digest_header = headers.get("digest")
    if not signature_header or not digest_header or not secret_b64:
        return False

    m = re.match(r"SHA-256=(.+)", digest_header.strip())
    if not m:
        return False
    try:
        expected_digest = base64.b64decode(m.group(1))
    except ValueError:
        return False
    if not hmac.compare_digest(hashlib.sha256(body).digest(), expected_digest):
        return False

    parts = {}
    for chunk in signature_header.split(","):
        if "=" in chunk:
            k, v = chunk.strip().split("=", 1)
            parts[k] = v.strip().strip('"')
    signed_headers = (parts.get("headers") or "").split()
    received = parts.get("signature")
    if not signed_headers or not received:
        return False

    lines = []
    for name in signed_headers:
        name = name.lower()
        if name == "(request-target)":
            lines.append(f"(request-target): {method.lower()} {path}")
            continue
        val = headers.get(name)
        if val is None:
            return False
        lines.append(f"{name}: {str(val).strip()}")

    computed = hmac.new(base64.b64decode(secret_b64), "\n".join(lines).encode("utf-8"), hashlib.sha256).digest()
    return hmac.compare_digest(base64.b64encode(computed).decode("ascii"), received)


@router.post("/webhooks/cybersource/refunds")
async def cybersource_refund_webhook(req: Request, svc: RefundLogService = Depends(get_refund_service)):
    body = await req.body()
    if settings.CYBS_WEBHOOK_VERIFY:
        path = (settings.CYBS_WEBHOOK_PATH or req.url.path).strip() or req.url.path
        if not verify_cybs_signature(dict(req.headers), body, req.method, path, settings.CYBS_SECRET_KEY_B64):
            raise HTTPException(status_code=401, detail="Invalid webhook signature")
    try:
        payload = json.loads(body.decode("utf-8") or "{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    # Notification shapes vary by product; accept the common ones
    refund_id = payload.get("id") or (payload.get("transactionInformation") or {}).get("id")
    status = payload.get("status") or (payload.get("applicationInformation") or {}).get("status") or ""
    if not refund_id or not status:
        return {"ok": True, "matched": False}

    try:
        entry = svc.confirm_processor_refund(str(refund_id), str(status))
    except NotFoundError:
        logger.warning("Refund webhook for unknown processor reference {} ({})", refund_id, status)
        return {"ok": True, "matched": False}
    log_activity(svc.db, "cybersource", "refund.webhook", "refund_log", entry.id, {"status": status})
    svc.db.commit()
    return {"ok": True, "matched": True, "reference": entry.reference, "status": entry.status}
