# GearShare Rentals - Equipment Rental Marketplace Backend
# Copyright (C) 2025 Oleg Tokmakov
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""Database setup and connection management."""

from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from gearshare.config import get_settings

# Base class for all models
Base = declarative_base()

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> str:
    """Get the database URL from settings."""
    settings = get_settings()
    if settings.database.url:
        return settings.database.url

    db_path = settings.database.path

    # Ensure directory exists
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    return f"sqlite:///{db_path}"


def init_engine():
    """Initialize the database engine."""
    global _engine, _SessionLocal

    database_url = get_database_url()
    is_sqlite = database_url.startswith("sqlite")

    _engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False} if is_sqlite else {},
        echo=get_settings().app.debug,
    )

    if is_sqlite:
        # Enable foreign keys for SQLite
        @event.listens_for(_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)

    return _engine


def get_engine():
    """Get the database engine, initializing if needed."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_local():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


def get_db() -> Generator[Session, None, None]:
    """Dependency to get database session."""
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables(engine=None):
    """Create all database tables."""
    # Import all models to ensure they're registered
    from gearshare.models import auth, equipment, notification, rental, user  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())


def seed_defaults(db: Session) -> None:
    """Insert roles and scheduler jobs that must always exist."""
    from gearshare.models.auth import CronJob
    from gearshare.models.user import Role

    roles_data = [
        (1, "admin", "Administrator - full access to all rentals"),
        (2, "owner", "Owner - lists equipment and manages its rentals"),
        (3, "renter", "Renter - books and pays for equipment"),
    ]

    for role_id, name, description in roles_data:
        existing = db.query(Role).filter(Role.id == role_id).first()
        if not existing:
            db.add(Role(id=role_id, name=name, description=description))

    cron_jobs_data = [
        (
            "expire_pending_rentals",
            "Expire Pending Rentals",
            "Cancel unpaid rentals whose reservation hold expired",
            "*/5 * * * *",
        ),
        (
            "notification_cleanup",
            "Notification Cleanup",
            "Remove old read notifications",
            "0 3 * * *",
        ),
    ]

    for job_key, job_name, description, cron_schedule in cron_jobs_data:
        existing = db.query(CronJob).filter(CronJob.job_key == job_key).first()
        if not existing:
            db.add(
                CronJob(
                    job_key=job_key,
                    job_name=job_name,
                    description=description,
                    cron_schedule=cron_schedule,
                    is_enabled=True,
                )
            )

    db.commit()


def init_database():
    """Initialize database with tables and seed data."""
    create_tables()

    SessionLocal = get_session_local()
    db = SessionLocal()

    try:
        seed_defaults(db)
        print("Database initialized successfully")
    except Exception as e:
        db.rollback()
        raise e
    finally:
        db.close()
