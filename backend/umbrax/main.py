from __future__ import annotations

import logging
import os
import time

import redis
import requests
from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import habbo
from .auth import hash_password, make_ws_token, verify_password
from .auth_sessions import SessionRow, create_session, destroy_session, now_s, purge_expired_sessions
from .db import get_engine
from .models import Base, Rank, TimeRequest, User
from .permissions import UserRole, can_be_sovereign, has_admin_access, has_full_access, is_subordinate, user_role
from .schemas import LoginIn, RegisterIn, TimeRequestAnswerIn, TimeRequestIn, UserDeleteIn, UserUpdateIn
from .seed import bootstrap_admin, lowest_rank, seed_ranks
from .session_deps import get_optional_user, get_user_from_session_cookie
from .time_tracking import TIME_REQUEST_STATUSES, clean_expired_requests, has_pending_request, new_time_request

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Umbrax API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

engine = None

SESSION_COOKIE = os.environ.get("SESSION_COOKIE", "umbrax_session")
SESSION_TTL_SECONDS = int(os.environ.get("SESSION_TTL_SECONDS", "604800"))  # 7 days

redis_url = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
r = redis.Redis.from_url(redis_url, decode_responses=True)


@app.on_event("startup")
def _startup():
    # Postgres in docker-compose might not be ready when API boots.
    global engine
    last_exc: Exception | None = None
    for attempt in range(30):
        try:
            engine = get_engine()
            Base.metadata.create_all(bind=engine)
            seed_ranks(engine)
            bootstrap_admin(engine)
            return
        except Exception as exc:  # noqa: BLE001
            last_exc = exc
            logger.warning("db init attempt %d failed: %s", attempt + 1, exc)
            time.sleep(1.0)
    raise RuntimeError(f"DB init failed after retries: {last_exc}")


# --- error envelopes -------------------------------------------------------


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError):
    details: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query")]
        details.setdefault(".".join(loc) or "_", []).append(str(err.get("msg", "invalid")))
    return JSONResponse(status_code=400, content={"error": "invalid data", "details": details})


@app.exception_handler(Exception)
async def _unhandled_error(request: Request, exc: Exception):
    logger.error("unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "internal server error"})


# --- helpers ---------------------------------------------------------------


def _require_engine():
    if engine is None:
        raise HTTPException(status_code=503, detail="db not ready")
    return engine


def _current_user(request: Request) -> User:
    return get_user_from_session_cookie(_require_engine(), request.cookies.get(SESSION_COOKIE))


def _require_admin_access(request: Request) -> User:
    u = _current_user(request)
    if not has_admin_access(u):
        raise HTTPException(status_code=403, detail="you do not have permission to access this feature")
    return u


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded.split(",")[0].strip():
        return forwarded.split(",")[0].strip()
    return request.headers.get("x-real-ip") or "unknown"


def _set_session_cookie(response: Response, sid: str, persistent: bool) -> None:
    # httpOnly cookie, Lax for form posts; without remember-me it dies with the browser
    response.set_cookie(
        key=SESSION_COOKIE,
        value=sid,
        httponly=True,
        samesite="lax",
        secure=os.environ.get("APP_ENV", "dev") == "production",
        path="/",
        max_age=SESSION_TTL_SECONDS if persistent else None,
    )


def _rank_out(rank: Rank) -> dict:
    return {
        "id": int(rank.id),
        "name": rank.name,
        "order": int(rank.order),
        "icon": rank.icon,
        "roleDescription": rank.role_description,
    }


def _user_out(u: User) -> dict:
    return {
        "id": u.id,
        "habboName": u.habbo_name,
        "avatarUrl": u.avatar_url,
        "rankId": int(u.rank_id),
        "isSovereign": bool(u.is_sovereign),
        "createdAt": int(u.created_at),
        "updatedAt": int(u.updated_at),
        "rank": _rank_out(u.rank),
    }


def _user_brief(u: User | None) -> dict | None:
    if u is None:
        return None
    return {"id": u.id, "habboName": u.habbo_name, "rank": _rank_out(u.rank)}


def _time_request_out(tr: TimeRequest) -> dict:
    return {
        "id": tr.id,
        "status": tr.status,
        "notes": tr.notes,
        "expiresAt": int(tr.expires_at),
        "createdAt": int(tr.created_at),
        "respondedAt": int(tr.responded_at) if tr.responded_at is not None else None,
        "responseNotes": tr.response_notes,
        "subjectUser": _user_out(tr.subject_user),
        "createdBy": _user_brief(tr.created_by),
        "respondedBy": _user_brief(tr.responded_by),
    }


# --- routes ----------------------------------------------------------------


@app.get("/health")
def health():
    try:
        r.ping()
        redis_ok = True
    except redis.RedisError:
        redis_ok = False
    return {"ok": True, "redis": redis_ok}


@app.get("/healthz")
async def healthz():
    return {"ok": True}


@app.post("/api/auth/login")
def login(body: LoginIn, request: Request, response: Response):
    eng = _require_engine()
    name_lower = body.habbo_name.strip().lower()

    with Session(eng) as s:
        u = s.execute(select(User).where(User.habbo_name_lower == name_lower)).scalars().first()
        # same answer for unknown user and bad password
        if u is None or not verify_password(body.password, u.password_hash):
            raise HTTPException(status_code=401, detail="invalid username or password")

        u.ip_address = _client_ip(request)
        s.add(u)
        sid = create_session(s, u.id, SESSION_TTL_SECONDS)
        s.commit()
        out = _user_out(u)

    _set_session_cookie(response, sid, persistent=body.remember_me)
    logger.info("login ok for %s", out["habboName"])
    return {"message": "Welcome back to UMBRAX CLAN!", "user": out}


@app.post("/api/auth/register", status_code=201)
def register(body: RegisterIn, request: Request, response: Response):
    eng = _require_engine()

    check = habbo.validate_habbo_user(body.habbo_name)
    if not check.is_valid:
        return JSONResponse(
            status_code=400,
            content={"error": check.error or "user does not exist on Habbo Hotel", "field": "habboName"},
        )

    exact_name = check.exact_name or body.habbo_name
    name_lower = exact_name.lower()
    taken = JSONResponse(
        status_code=409,
        content={"error": "this name is already registered in UMBRAX CLAN", "field": "habboName"},
    )

    sid = None
    with Session(eng) as s:
        if s.execute(select(User.id).where(User.habbo_name_lower == name_lower)).first() is not None:
            return taken
        rank = lowest_rank(s)
        if rank is None:
            raise RuntimeError("no ranks configured")

        u = User(
            habbo_name=exact_name,
            habbo_name_lower=name_lower,
            password_hash=hash_password(body.password),
            avatar_url=check.avatar_url,
            ip_address=_client_ip(request),
            rank_id=rank.id,
            is_sovereign=False,
        )
        s.add(u)
        try:
            s.flush()
            if body.remember_me:
                sid = create_session(s, u.id, SESSION_TTL_SECONDS)
            s.commit()
        except IntegrityError:
            s.rollback()
            return taken
        out = _user_out(u)

    if sid:
        _set_session_cookie(response, sid, persistent=True)
    logger.info("registered %s", exact_name)
    return {"message": "Welcome to UMBRAX CLAN! Your account has been created.", "user": out}


@app.post("/api/auth/logout")
def logout(request: Request):
    sid = request.cookies.get(SESSION_COOKIE)
    destroy_session(_require_engine(), sid)
    if sid:
        logger.info("logout")
    resp = RedirectResponse(url="/", status_code=303)
    resp.delete_cookie(key=SESSION_COOKIE, path="/")
    return resp


@app.get("/api/auth/me")
def me(request: Request):
    u = _current_user(request)
    return {"success": True, "user": _user_out(u)}


@app.get("/api/ranks")
def list_ranks(request: Request):
    _require_admin_access(request)
    with Session(engine) as s:
        rows = s.execute(select(Rank).order_by(Rank.order.asc())).scalars().all()
        return {"success": True, "ranks": [_rank_out(rk) for rk in rows]}


@app.get("/api/ws/token")
def ws_token(request: Request):
    """Token for the realtime server, valid 24h."""
    u = _current_user(request)
    return {"token": make_ws_token(u.id, u.habbo_name)}


@app.get("/api/admin/time-requests/cleanup")
def cleanup_time_requests():
    """Called by an external cron, every five minutes."""
    eng = _require_engine()
    count = clean_expired_requests(eng)
    purged = purge_expired_sessions(eng)
    return {
        "success": True,
        "expiredCount": count,
        "purgedSessions": purged,
        "message": f"Marked {count} time requests as expired",
    }


def _debug_endpoints_enabled() -> bool:
    flag = os.environ.get("DEBUG_ENDPOINTS")
    if flag is not None:
        return flag.strip().lower() in {"1", "true", "yes", "on"}
    return os.environ.get("APP_ENV", "dev") == "dev"


@app.get("/api/debug/user")
def debug_user(request: Request):
    """Dump the session user and its permission checks. Never enable in production."""
    if not _debug_endpoints_enabled():
        raise HTTPException(status_code=404, detail="Not Found")

    u = get_optional_user(_require_engine(), request.cookies.get(SESSION_COOKIE))
    if u is None:
        return {"error": "No user session found", "user": None}

    return {
        "user": {
            "id": u.id,
            "habboName": u.habbo_name,
            "rankId": int(u.rank_id),
            "isSovereign": bool(u.is_sovereign),
            "rank": {
                "id": int(u.rank.id),
                "name": u.rank.name,
                "order": int(u.rank.order),
                "icon": u.rank.icon,
            },
        },
        "conditions": {
            "rank.order <= 3": has_full_access(u),
            "isSovereign": bool(u.is_sovereign),
            "shouldShowAdmin": has_admin_access(u),
        },
        "role": user_role(u).value,
    }


@app.get("/api/images")
def image_proxy(url: str):
    if not habbo.is_allowed_image_url(url):
        raise HTTPException(status_code=400, detail="image host not allowed")
    try:
        content, content_type = habbo.fetch_image(url)
    except (requests.RequestException, habbo.ImageProxyError) as exc:
        logger.warning("image proxy failed for %s: %s", url, exc)
        raise HTTPException(status_code=502, detail="could not fetch image")
    return Response(content=content, media_type=content_type, headers={"Cache-Control": "public, max-age=86400"})


# --- time requests ---------------------------------------------------------


@app.post("/api/admin/time-requests")
def create_time_request(body: TimeRequestIn, request: Request):
    """Ask a subordinate to start logging time. Cupula, or the sovereign of the member's rank."""
    me = _require_admin_access(request)

    with Session(engine) as s:
        subject = s.get(User, body.subject_user_id)
        if subject is None:
            raise HTTPException(status_code=404, detail="user not found")
        subject_order = int(subject.rank.order)

    if not is_subordinate(subject_order):
        raise HTTPException(status_code=400, detail="time can only be requested for subordinates (ranks 5-10)")
    if not has_full_access(me) and not (bool(me.is_sovereign) and int(me.rank.order) == subject_order):
        raise HTTPException(status_code=403, detail="you cannot request time from this member")
    if has_pending_request(engine, body.subject_user_id):
        raise HTTPException(status_code=400, detail="this member already has a pending time request")

    with Session(engine) as s:
        tr = new_time_request(body.subject_user_id, me.id, body.notes)
        s.add(tr)
        s.commit()
        out = _time_request_out(tr)

    logger.info("time request %s created by %s", out["id"], me.habbo_name)
    return {"success": True, "timeRequest": out}


@app.get("/api/admin/time-requests")
def list_time_requests(
    request: Request,
    status: str | None = None,
    only_pending: bool = Query(default=False, alias="onlyPending"),
):
    """Cupula sees everything, a sovereign its own rank, everyone else their own requests."""
    me = _current_user(request)

    q = select(TimeRequest)
    if only_pending:
        q = q.where(TimeRequest.status == "PENDING", TimeRequest.expires_at > now_s())
    elif status:
        st = status.strip().upper()
        if st not in TIME_REQUEST_STATUSES:
            raise HTTPException(status_code=400, detail="invalid status")
        q = q.where(TimeRequest.status == st)

    role = user_role(me)
    if role is UserRole.SOBERANO:
        q = q.where(TimeRequest.subject_user_id.in_(select(User.id).where(User.rank_id == me.rank_id)))
    elif role is not UserRole.CUPULA:
        q = q.where(TimeRequest.subject_user_id == me.id)

    with Session(engine) as s:
        rows = s.execute(q.order_by(TimeRequest.created_at.desc())).scalars().all()
        return {"success": True, "timeRequests": [_time_request_out(tr) for tr in rows]}


@app.patch("/api/admin/time-requests/{req_id}")
def answer_time_request(req_id: str, body: TimeRequestAnswerIn, request: Request):
    """Only the member the request is addressed to may approve or reject it."""
    me = _current_user(request)

    with Session(engine) as s:
        tr = s.get(TimeRequest, req_id)
        if tr is None:
            raise HTTPException(status_code=404, detail="time request not found")
        if tr.subject_user_id != me.id:
            raise HTTPException(status_code=403, detail="only the requested member can answer this request")
        if tr.status != "PENDING":
            raise HTTPException(status_code=400, detail="this request was already answered")

        now = now_s()
        if int(tr.expires_at) < now:
            tr.status = "EXPIRED"
            s.commit()
            raise HTTPException(status_code=400, detail="this request has expired")

        tr.status = "APPROVED" if body.action == "approve" else "REJECTED"
        tr.responded_by_id = me.id
        tr.response_notes = body.response_notes
        tr.responded_at = now
        s.commit()
        out = _time_request_out(tr)

    logger.info("time request %s %s by %s", req_id, out["status"].lower(), me.habbo_name)
    return {"success": True, "timeRequest": out}


# --- user management -------------------------------------------------------


def _admin_user_out(u: User) -> dict:
    out = _user_out(u)
    out["ipAddress"] = u.ip_address
    return out


@app.get("/api/admin/users")
def admin_list_users(
    request: Request,
    page: int = 1,
    limit: int = 20,
    search: str | None = None,
    rank_id: int | None = Query(default=None, alias="rankId"),
    is_sovereign: bool | None = Query(default=None, alias="isSovereign"),
):
    _require_admin_access(request)
    page = max(page, 1)
    limit = min(max(limit, 1), 50)

    q = select(User)
    if rank_id:
        q = q.where(User.rank_id == rank_id)
    if is_sovereign is not None:
        q = q.where(User.is_sovereign == is_sovereign)
    if search and search.strip():
        q = q.where(User.habbo_name_lower.contains(search.strip().lower()))

    with Session(engine) as s:
        total = int(s.execute(select(func.count()).select_from(q.subquery())).scalar_one())
        rows = (
            s.execute(
                q.join(Rank, User.rank_id == Rank.id)
                .order_by(Rank.order.asc(), User.habbo_name_lower.asc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            .scalars()
            .all()
        )
        data = [_admin_user_out(u) for u in rows]

    total_pages = (total + limit - 1) // limit
    return {
        "success": True,
        "data": data,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages,
            "hasNextPage": page < total_pages,
            "hasPreviousPage": page > 1,
        },
    }


@app.get("/api/admin/users/{user_id}")
def admin_get_user(user_id: str, request: Request):
    _require_admin_access(request)
    with Session(engine) as s:
        u = s.get(User, user_id)
        if u is None:
            raise HTTPException(status_code=404, detail="user not found")
        return {"success": True, "data": _admin_user_out(u)}


@app.patch("/api/admin/users/{user_id}")
def admin_update_user(user_id: str, body: UserUpdateIn, request: Request):
    """Change a member's rank, or grant/revoke the sovereign flag.

    Cupula may assign any rank. A sovereign may only move members into its
    own rank and never touches Cupula members. Only Cupula manages sovereigns.
    """
    me = _require_admin_access(request)
    role = user_role(me)

    if body.rank_id is not None:
        with Session(engine) as s:
            target = s.get(User, user_id)
            if target is None:
                raise HTTPException(status_code=404, detail="user not found")
            if has_full_access(target) and role is not UserRole.CUPULA:
                raise HTTPException(status_code=403, detail="you cannot change the rank of Cupula members")
            new_rank = s.get(Rank, body.rank_id)
            if new_rank is None:
                raise HTTPException(status_code=404, detail="rank not found")
            if role is UserRole.SOBERANO and int(new_rank.id) != int(me.rank_id):
                raise HTTPException(
                    status_code=403,
                    detail=f"you can only assign members to {me.rank.name} (your current rank)",
                )
            old_rank = target.rank.name
            target.rank_id = new_rank.id
            s.commit()
            logger.info(
                "%s moved %s from %s to %s: %s", me.habbo_name, target.habbo_name, old_rank, new_rank.name, body.reason
            )
        return {"success": True, "message": "rank updated"}

    if body.is_sovereign is not None:
        if role is not UserRole.CUPULA:
            raise HTTPException(status_code=403, detail="only the Cupula can manage sovereigns")
        with Session(engine) as s:
            target = s.get(User, user_id)
            if target is None:
                raise HTTPException(status_code=404, detail="user not found")
            bottom = lowest_rank(s)
            if body.is_sovereign and not can_be_sovereign(target.rank.order, bottom.order):
                raise HTTPException(
                    status_code=400,
                    detail="only members below the Cupula and above recruits can be sovereigns",
                )
            target.is_sovereign = body.is_sovereign
            s.commit()
            logger.info(
                "%s set sovereign=%s on %s: %s", me.habbo_name, body.is_sovereign, target.habbo_name, body.reason
            )
        return {
            "success": True,
            "message": "user is now a sovereign" if body.is_sovereign else "sovereign role removed",
        }

    raise HTTPException(status_code=400, detail="no update given, send rankId or isSovereign")


@app.delete("/api/admin/users/{user_id}")
def admin_delete_user(user_id: str, body: UserDeleteIn, request: Request):
    me = _current_user(request)
    if not has_full_access(me):
        raise HTTPException(status_code=403, detail="you do not have permission to access this feature")

    with Session(engine) as s:
        target = s.get(User, user_id)
        if target is None:
            raise HTTPException(status_code=404, detail="user not found")
        if has_full_access(target):
            raise HTTPException(status_code=400, detail="Cupula members cannot be deleted")

        name = target.habbo_name
        # SQLite does not enforce the ON DELETE rules
        s.query(SessionRow).filter(SessionRow.user_id == user_id).delete()
        s.query(TimeRequest).filter(
            (TimeRequest.subject_user_id == user_id) | (TimeRequest.created_by_id == user_id)
        ).delete(synchronize_session=False)
        s.query(TimeRequest).filter(TimeRequest.responded_by_id == user_id).update(
            {TimeRequest.responded_by_id: None}, synchronize_session=False
        )
        s.delete(target)
        s.commit()

    logger.info("%s deleted %s: %s", me.habbo_name, name, body.reason)
    return {"success": True, "message": "user deleted"}
