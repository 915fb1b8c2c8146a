from __future__ import annotations

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from .auth_sessions import SessionRow, now_s
from .models import User


def get_user_from_session_cookie(engine, sid: str | None) -> User:
    if not sid:
        raise HTTPException(status_code=401, detail="not authenticated")
    with Session(engine) as s:
        row = s.execute(select(SessionRow).where(SessionRow.sid == sid)).scalars().first()
        if row is None:
            raise HTTPException(status_code=401, detail="not authenticated")
        if int(row.expires_at) < now_s():
            s.delete(row)
            s.commit()
            raise HTTPException(status_code=401, detail="not authenticated")
        u = s.get(User, row.user_id)
        if u is None:
            raise HTTPException(status_code=401, detail="not authenticated")
        return u


def get_optional_user(engine, sid: str | None) -> User | None:
    try:
        return get_user_from_session_cookie(engine, sid)
    except HTTPException:
        return None
