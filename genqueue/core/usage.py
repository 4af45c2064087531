import logging
from typing import Optional

from sqlalchemy.orm import Session

from genqueue.db.models import UsageLog

logger = logging.getLogger(__name__)

DEFAULT_CREDITS = 1


def credits_for(metadata: Optional[dict]) -> int:
    """Credits charged for a job: ``metadata.credits`` when positive, else 1."""
    credits = (metadata or {}).get("credits")
    if isinstance(credits, bool) or not isinstance(credits, (int, float)) or credits <= 0:
        return DEFAULT_CREDITS
    return int(credits)


def record_usage(db: Session, *, user_id: str, action: str, credits: int = DEFAULT_CREDITS,
                 format: str = None, quality: str = None, metadata: dict = None) -> UsageLog:
    """
    Record one usage event (credit accounting).
    """
    log = UsageLog(
        user_id=user_id,
        action=action,
        format=format,
        quality=quality,
        credits_consumed=credits,
        meta=metadata or {},
    )
    db.add(log)
    db.commit()
    db.refresh(log)
    return log
