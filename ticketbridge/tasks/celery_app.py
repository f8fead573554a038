from urllib.parse import urlparse, urlunparse, parse_qs, urlencode

from celery import Celery
from celery.signals import worker_process_init
from ticketbridge.core.config import settings
from ticketbridge.core.logging import configure_logging


def _redis_url_for_celery(url: str) -> str:
    """Celery requires ssl_cert_reqs for rediss:// (e.g. Upstash TLS)."""
    if not url or not url.strip().lower().startswith("rediss://"):
        return url
    parsed = urlparse(url)
    qs = parse_qs(parsed.query)
    if "ssl_cert_reqs" not in qs:
        qs["ssl_cert_reqs"] = ["CERT_NONE"]
        new_query = urlencode(qs, doseq=True)
        return urlunparse(parsed._replace(query=new_query))
    return url


_redis_url = _redis_url_for_celery(settings.REDIS_URL)

celery = Celery(
    "ticketbridge",
    broker=_redis_url,
    backend=_redis_url,
    include=["ticketbridge.tasks.jobs"],
)

celery.conf.timezone = "UTC"


@worker_process_init.connect
def _init_logging(**kwargs):
    configure_logging()


celery.conf.beat_schedule = {
    "retry-unsynced-bookings-every-5-minutes": {
        "task": "ticketbridge.tasks.jobs.retry_unsynced_bookings",
        "schedule": 300.0,
        "kwargs": {"limit": 50},
    },
    "poll-pending-etickets-every-10-minutes": {
        "task": "ticketbridge.tasks.jobs.poll_pending_etickets",
        "schedule": 600.0,
        "kwargs": {"limit": 100},
    },
}
