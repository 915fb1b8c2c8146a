from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .auth_sessions import now_s
from .models import TimeRequest

logger = logging.getLogger(__name__)

TIME_REQUEST_TTL_SECONDS = 5 * 60
TIME_REQUEST_STATUSES = ("PENDING", "APPROVED", "REJECTED", "EXPIRED")


def clean_expired_requests(engine) -> int:
    """Mark pending requests past their deadline as EXPIRED; return how many changed."""
    now = now_s()
    with Session(engine) as s:
        result = s.execute(
            update(TimeRequest)
            .where(TimeRequest.status == "PENDING", TimeRequest.expires_at < now)
            .values(status="EXPIRED")
        )
        s.commit()
        count = max(int(result.rowcount or 0), 0)
    if count:
        logger.info("expired %d time requests", count)
    return count


def has_pending_request(engine, user_id: str) -> bool:
    with Session(engine) as s:
        row = (
            s.execute(
                select(TimeRequest.id).where(
                    TimeRequest.subject_user_id == user_id,
                    TimeRequest.status == "PENDING",
                    TimeRequest.expires_at > now_s(),
                )
            )
            .scalars()
            .first()
        )
        return row is not None


def new_time_request(subject_user_id: str, created_by_id: str, notes: str | None = None) -> TimeRequest:
    """Build a PENDING request that lapses after TIME_REQUEST_TTL_SECONDS. Caller adds and commits."""
    now = now_s()
    return TimeRequest(
        subject_user_id=subject_user_id,
        created_by_id=created_by_id,
        status="PENDING",
        notes=notes,
        created_at=now,
        expires_at=now + TIME_REQUEST_TTL_SECONDS,
    )
