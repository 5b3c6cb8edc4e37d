"""Deployment step that creates the admin account if it does not exist.

Run once per deployment::

    python -m foodshare.provision

The admin credentials come from ``ADMIN_EMAIL``, ``ADMIN_PASSWORD`` and
``ADMIN_NAME``. Running it again is a no-op.
"""

from __future__ import annotations

import logging
import sys

from sqlalchemy.orm import Session

from .auth import hash_password
from .config import settings
from .database import SessionLocal, init_db
from .models.user import Role, User

logger = logging.getLogger(__name__)


def ensure_admin(email: str, password: str, name: str) -> bool:
    """Create the admin user unless one with ``email`` exists.

    Returns ``True`` when a user was created.
    """
    email = email.lower()
    session: Session = SessionLocal()
    try:
        existing = session.query(User).filter(User.email == email).first()
        if existing:
            if existing.role != Role.ADMIN.value:
                raise RuntimeError(f"{email} is registered with role {existing.role}")
            logger.info("admin user %s already exists", email)
            return False
        session.add(
            User(
                name=name,
                email=email,
                password_hash=hash_password(password),
                role=Role.ADMIN.value,
            )
        )
        session.commit()
        logger.info("created admin user %s", email)
        return True
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    if not settings.admin_password:
        logger.error("ADMIN_PASSWORD is not set; refusing to create an admin account")
        return 1
    init_db()
    ensure_admin(settings.admin_email, settings.admin_password, settings.admin_name)
    return 0


if __name__ == "__main__":
    sys.exit(main())
