# dentlink/db/init_db.py
from __future__ import annotations

import argparse
from typing import Optional

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dentlink.db.base import Base, import_models
from dentlink.db.session import engine as default_engine
from dentlink.services.settings_service import get_or_create_platform_settings


def print_tables(eng: Engine):
    names = sorted(inspect(eng).get_table_names())
    print("Existing tables:", names)
    return set(names)


def create_schema(eng: Engine, *, fresh: bool = False) -> None:
    import_models()
    if fresh:
        Base.metadata.drop_all(bind=eng)
    Base.metadata.create_all(bind=eng)


def seed_settings(db: Session) -> None:
    """Platform settings row from DEFAULT_COMMISSION_*; no-op when it exists."""
    get_or_create_platform_settings(db)


def run(fresh: bool = False, eng: Optional[Engine] = None) -> None:
    eng = eng or default_engine
    if fresh:
        print("WARNING: Dropping ALL tables (dev only) …")

    print("Creating all missing tables …")
    create_schema(eng, fresh=fresh)
    print_tables(eng)

    try:
        with Session(eng) as db:
            seed_settings(db)
            db.commit()
            print("Platform settings seeded.")
    except SQLAlchemyError as e:
        print("Seeding failed:", e)
        raise


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Initialize DB (create tables, seed platform settings).")
    parser.add_argument(
        "--fresh",
        action="store_true",
        help="Drop & recreate all tables (DEV ONLY).",
    )
    args = parser.parse_args()
    run(fresh=args.fresh)
