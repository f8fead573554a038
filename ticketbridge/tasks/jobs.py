from ticketbridge.tasks.celery_app import celery
from ticketbridge.tasks import worker_jobs


@celery.task(name="ticketbridge.tasks.jobs.sync_booking", bind=True)
def sync_booking(self, booking_id: str):
    result = worker_jobs.sync_booking(booking_id)
    if result.get("retry"):
        # Backoff grows with the persisted attempt counter
        raise self.retry(countdown=60 * int(result.get("attempts") or 1), max_retries=None)
    return result


@celery.task(name="ticketbridge.tasks.jobs.retry_unsynced_bookings")
def retry_unsynced_bookings(limit: int = 50):
    ids = worker_jobs.find_unsynced_bookings(limit=limit)
    for booking_id in ids:
        sync_booking.delay(booking_id)
    return {"queued": len(ids)}


@celery.task(name="ticketbridge.tasks.jobs.poll_pending_etickets")
def poll_pending_etickets(limit: int = 100):
    return worker_jobs.poll_pending_etickets(limit=limit)
