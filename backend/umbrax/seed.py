from __future__ import annotations

import logging
import os

from sqlalchemy import select
from sqlalchemy.orm import Session

from .auth import hash_password
from .habbo import avatar_url
from .models import Rank, User

logger = logging.getLogger(__name__)

# (id, name, order, icon, role description)
DEFAULT_RANKS = [
    (1, "Gran señor de las sombras", 1, "crown", "Supreme authority of the clan, full access to every admin and operational feature."),
    (2, "Sombra maestra", 2, "star", "Right hand of the leader, runs administration and supervises every lower rank."),
    (3, "Embajador omega", 3, "shield", "Special missions and clan events, external relations and alliances."),
    (4, "Acechador nocturno", 4, "eye", "Moderates chat and rooms, enforces the internal rules."),
    (5, "Maestro del eclipse", 5, "moon", "Supervises roles and missions, recommends promotions and sanctions."),
    (6, "Explorador oscuro", 6, "compass", "Messaging and intelligence about other clans and events."),
    (7, "Guardián de las sombras", 7, "lock", "Security and door control for the clan rooms."),
    (8, "Sombra silenciosa", 8, "ghost", "Internal counter-espionage and covert missions."),
    (9, "Maestro de cuchillas", 9, "sword", "Trains recruits and runs onboarding."),
    (10, "Sombra aprendiz", 10, "user", "Recruit on probation with read-only access."),
]


def seed_ranks(engine) -> None:
    with Session(engine) as s:
        for rank_id, name, order, icon, desc in DEFAULT_RANKS:
            r = s.get(Rank, rank_id)
            if r is None:
                r = Rank(id=rank_id)
            r.name = name
            r.order = order
            r.icon = icon
            r.role_description = desc
            s.add(r)
        s.commit()


def lowest_rank(s: Session) -> Rank | None:
    return s.execute(select(Rank).order_by(Rank.order.desc())).scalars().first()


def bootstrap_admin(engine) -> None:
    # In dev, default to admin/Admin1234 at the top rank.
    app_env = os.environ.get("APP_ENV", "dev")
    admin_user = os.environ.get("ADMIN_BOOTSTRAP_USERNAME", "").strip()
    admin_pw = os.environ.get("ADMIN_BOOTSTRAP_PASSWORD", "").strip()
    if app_env == "dev":
        admin_user = admin_user or "admin"
        admin_pw = admin_pw or "Admin1234"
    if not admin_user or not admin_pw:
        return

    with Session(engine) as s:
        top = s.execute(select(Rank).order_by(Rank.order.asc())).scalars().first()
        if top is None:
            raise RuntimeError("ranks must be seeded before the bootstrap admin")
        u = s.execute(select(User).where(User.habbo_name_lower == admin_user.lower())).scalars().first()
        if u is None:
            s.add(
                User(
                    habbo_name=admin_user,
                    habbo_name_lower=admin_user.lower(),
                    password_hash=hash_password(admin_pw),
                    avatar_url=avatar_url(admin_user),
                    rank_id=top.id,
                    is_sovereign=False,
                )
            )
            s.commit()
            logger.info("created bootstrap admin %r", admin_user)
        elif int(u.rank_id) != int(top.id):
            u.rank_id = top.id
            s.add(u)
            s.commit()
