# dentlink/core/config.py
import os
from typing import List, Optional
from pydantic import BaseModel
from dotenv import load_dotenv
from urllib.parse import quote_plus

load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


class Settings(BaseModel):
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "DentLink Core")
    API_V1_STR: str = os.getenv("API_V1_STR", "/api")

    # CORS (env takes priority)
    BACKEND_CORS_ORIGINS: List[str] = _split_csv(
        os.getenv(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ))

    # ---------- Database ----------
    MYSQL_HOST: str = os.getenv("MYSQL_HOST", "localhost")
    MYSQL_PORT: int = int(os.getenv("MYSQL_PORT", "3306"))
    MYSQL_USER: str = os.getenv("MYSQL_USER", "dentlink")
    MYSQL_PASSWORD: str = os.getenv("MYSQL_PASSWORD", "dentlink")
    MYSQL_DB: str = os.getenv("MYSQL_DB", "dentlink")
    DB_DRIVER: str = os.getenv("DB_DRIVER", "pymysql")

    # full URL wins over the MySQL parts (sqlite:///./dentlink.db for local runs)
    DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL") or None

    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"mysql+{self.DB_DRIVER}://{quote_plus(self.MYSQL_USER)}:{quote_plus(self.MYSQL_PASSWORD)}"
            f"@{self.MYSQL_HOST}:{self.MYSQL_PORT}/{self.MYSQL_DB}")

    # ---------- Security ----------
    JWT_SECRET: str = os.getenv("JWT_SECRET", "change-this")
    JWT_ALG: str = os.getenv("JWT_ALG", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(
        os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "2440"))

    # ---------- Locale / logging ----------
    TIMEZONE: str = os.getenv("TIMEZONE", "Asia/Dhaka")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # ---------- Commission defaults (seeded into platform_settings) ----------
    DEFAULT_COMMISSION_TYPE: str = os.getenv("DEFAULT_COMMISSION_TYPE",
                                             "percentage")
    DEFAULT_COMMISSION_RATE: str = os.getenv("DEFAULT_COMMISSION_RATE", "10")

    # ---------- Workflow ----------
    PROPOSAL_DEADLINE_HOURS: int = int(
        os.getenv("PROPOSAL_DEADLINE_HOURS", "48"))

    # ---------- Settlement ----------
    CONFLICT_MAX_RETRIES: int = int(os.getenv("CONFLICT_MAX_RETRIES", "3"))
    SETTLEMENT_MAX_RETRIES: int = int(os.getenv("SETTLEMENT_MAX_RETRIES",
                                                "3"))
    # 0 disables the background retry worker
    SETTLEMENT_RETRY_INTERVAL_SECONDS: int = int(
        os.getenv("SETTLEMENT_RETRY_INTERVAL_SECONDS", "0"))
    MESSAGING_ENABLED: bool = _flag("MESSAGING_ENABLED", "true")


settings = Settings()
