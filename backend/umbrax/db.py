from __future__ import annotations

import os

from sqlalchemy import create_engine


def get_engine():
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required")
    if url.startswith("sqlite"):
        # TestClient runs handlers on a worker thread
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)
