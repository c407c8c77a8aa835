# dentlink/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """All DentLink tables inherit from this."""
    pass


def import_models() -> None:
    # Import all models so metadata is complete for create_all()
    from dentlink.models import (  # noqa: F401
        user,
        case,
        proposal,
        ledger,
        platform_settings,
        payment_capture,
        chat_channel,
        number_series,
        activity_log,
        error_log,
    )
