from __future__ import annotations

import secrets
import time

from sqlalchemy import BigInteger, Column, ForeignKey, String
from sqlalchemy.orm import Session

from .models import Base


class SessionRow(Base):
    __tablename__ = "sessions"

    sid = Column(String(64), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    expires_at = Column(BigInteger, nullable=False)  # unix seconds


def new_sid() -> str:
    return secrets.token_hex(32)


def now_s() -> int:
    return int(time.time())


def create_session(s: Session, user_id: str, ttl_seconds: int) -> str:
    """Add a session row to ``s`` and return its sid. Caller commits."""
    sid = new_sid()
    s.add(SessionRow(sid=sid, user_id=user_id, expires_at=now_s() + ttl_seconds))
    return sid


def destroy_session(engine, sid: str | None) -> None:
    if not sid:
        return
    with Session(engine) as s:
        s.query(SessionRow).filter(SessionRow.sid == sid).delete()
        s.commit()


def purge_expired_sessions(engine) -> int:
    with Session(engine) as s:
        n = s.query(SessionRow).filter(SessionRow.expires_at < now_s()).delete()
        s.commit()
        return int(n or 0)
