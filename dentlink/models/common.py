from __future__ import annotations

from sqlalchemy import Enum, Numeric

Money = Numeric(12, 2)
Rate = Numeric(10, 4)

MYSQL_ARGS = {
    "mysql_engine": "InnoDB",
    "mysql_charset": "utf8mb4",
    "mysql_collate": "utf8mb4_unicode_ci",
}


def enum_col(enum_cls, name: str) -> Enum:
    """Store enum *values* (lowercase wire names), not member names."""
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda e: [m.value for m in e],
        validate_strings=True,
    )
