import uuid, json
from sqlalchemy.orm import Session
from loguru import logger
from ticketbridge.models.activity_log import ActivityLog

def log_activity(db: Session, actor_id: str | None, action: str, entity_type: str, entity_id: str, details: dict | None = None) -> None:
    """Write an activity row inside a savepoint of the caller's transaction. Never raises.

    A failed insert rolls back only the savepoint; the caller's pending work is kept.
    Errors flushing that pending work still propagate.
    """
    db.flush()
    try:
        with db.begin_nested():
            db.add(ActivityLog(
                id=str(uuid.uuid4()),
                actor_id=actor_id or "system",
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                details_json=json.dumps(details or {}, ensure_ascii=False, default=str),
            ))
            db.flush()
    except Exception:
        logger.opt(exception=True).warning("Activity log write failed: action={} entity={}:{}", action, entity_type, entity_id)
