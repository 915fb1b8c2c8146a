from __future__ import annotations

import time
import uuid

from sqlalchemy import BigInteger, Boolean, Column, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _now_s() -> int:
    return int(time.time())


def _uuid() -> str:
    return str(uuid.uuid4())


class Rank(Base):
    __tablename__ = "ranks"

    id = Column(Integer, primary_key=True)
    name = Column(String(64), nullable=False)
    order = Column(Integer, nullable=False, unique=True)  # 1 = highest
    icon = Column(String(32), nullable=False)
    role_description = Column(Text, nullable=False, default="")


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    habbo_name = Column(String(32), nullable=False)
    habbo_name_lower = Column(String(32), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False)
    avatar_url = Column(String(512), nullable=True)
    ip_address = Column(String(64), nullable=True)

    rank_id = Column(Integer, ForeignKey("ranks.id"), nullable=False, index=True)
    is_sovereign = Column(Boolean, nullable=False, default=False)

    created_at = Column(BigInteger, nullable=False, default=_now_s)  # unix seconds
    updated_at = Column(BigInteger, nullable=False, default=_now_s, onupdate=_now_s)

    # handlers read the rank after the ORM session is closed
    rank = relationship(Rank, lazy="joined")


class TimeRequest(Base):
    __tablename__ = "time_requests"

    id = Column(String(36), primary_key=True, default=_uuid)
    subject_user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(16), nullable=False, default="PENDING")  # PENDING|APPROVED|REJECTED|EXPIRED
    notes = Column(Text, nullable=True)
    expires_at = Column(BigInteger, nullable=False, index=True)  # unix seconds
    created_at = Column(BigInteger, nullable=False, default=_now_s)

    responded_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    response_notes = Column(Text, nullable=True)
    responded_at = Column(BigInteger, nullable=True)

    subject_user = relationship(User, foreign_keys=[subject_user_id], lazy="joined")
    created_by = relationship(User, foreign_keys=[created_by_id], lazy="joined")
    responded_by = relationship(User, foreign_keys=[responded_by_id], lazy="joined")
