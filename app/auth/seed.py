from __future__ import annotations

import logging
import os

from sqlalchemy import select

from .core import generate_uid, hash_password
from .permissions import create_admin_user
from ..database import db_session
from ..models import User

logger = logging.getLogger("ecosystem.seed")

_DEFAULT_PASSWORD = "changeme123"


def seed_admin() -> None:
    """
    Create a super-admin account on first startup if no users exist.
    Credentials are read from environment variables so they can be
    overridden before deployment.

    Defaults (for local dev only — change before production):
      ECOSYSTEM_ADMIN_EMAIL    = admin@ecosystem40.com
      ECOSYSTEM_ADMIN_PASSWORD = changeme123
      ECOSYSTEM_ADMIN_NAME     = Ecosystem Admin
    """
    email    = os.getenv("ECOSYSTEM_ADMIN_EMAIL",    "admin@ecosystem40.com").strip().lower()
    password = os.getenv("ECOSYSTEM_ADMIN_PASSWORD", _DEFAULT_PASSWORD)
    name     = os.getenv("ECOSYSTEM_ADMIN_NAME",     "Ecosystem Admin")

    env = os.getenv("ECOSYSTEM_ENVIRONMENT", "development")

    with db_session() as session:
        existing = session.execute(select(User).limit(1)).scalar_one_or_none()
        if existing:
            return  # Users already seeded; never overwrite

        if password == _DEFAULT_PASSWORD:
            logger.warning(
                "Seeding admin with the DEFAULT password. "
                "Set ECOSYSTEM_ADMIN_PASSWORD before deploying to production."
            )
            if env != "development":
                logger.error(
                    "Refusing to seed default password in non-development environment (%s).",
                    env,
                )
                return

        admin = User(
            uid=generate_uid(),
            email=email,
            display_name=name,
            password_hash=hash_password(password),
            email_verified=True,
        )
        create_admin_user(admin, role="super_admin", created_by="seed")
        session.add(admin)
        logger.info("Default super admin created: %s", email)
