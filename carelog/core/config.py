# carelog/core/config.py
import os
from typing import List
from pydantic import BaseModel
from dotenv import load_dotenv
from urllib.parse import quote_plus

load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


class Settings(BaseModel):
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "CareLog MAR")
    API_V1_STR: str = os.getenv("API_V1_STR", "/api")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # CORS (env takes priority)
    BACKEND_CORS_ORIGINS: List[str] = _split_csv(
        os.getenv(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ))

    # ---------- Database ----------
    # "sqlite" (single facility install) or "mysql"
    DB_BACKEND: str = os.getenv("DB_BACKEND", "sqlite").lower()
    SQLITE_PATH: str = os.getenv("SQLITE_PATH", "./carelog.db")

    MYSQL_HOST: str = os.getenv("MYSQL_HOST", "localhost")
    MYSQL_PORT: int = int(os.getenv("MYSQL_PORT", "3306"))
    MYSQL_USER: str = os.getenv("MYSQL_USER", "carelog")
    MYSQL_PASSWORD: str = os.getenv("MYSQL_PASSWORD", "")
    MYSQL_DB: str = os.getenv("MYSQL_DB", "carelog")
    DB_DRIVER: str = os.getenv("DB_DRIVER", "pymysql")

    def database_uri(self) -> str:
        explicit = os.getenv("DATABASE_URL", "").strip()
        if explicit:
            return explicit
        if self.DB_BACKEND == "mysql":
            return (
                f"mysql+{self.DB_DRIVER}://{quote_plus(self.MYSQL_USER)}:{quote_plus(self.MYSQL_PASSWORD)}"
                f"@{self.MYSQL_HOST}:{self.MYSQL_PORT}/{self.MYSQL_DB}?charset=utf8mb4")
        return f"sqlite:///{self.SQLITE_PATH}"

    # ---------- Security ----------
    JWT_SECRET: str = os.getenv("JWT_SECRET", "change-this")
    JWT_ALG: str = os.getenv("JWT_ALG", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(
        os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "720"))

    # ---------- Facility ----------
    FACILITY_TZ: str = os.getenv("FACILITY_TZ", "America/Mexico_City")

    # ---------- MAR policy ----------
    # How long a nurse may still amend their own check-off.
    MAR_LOCK_WINDOW_MINUTES: int = int(
        os.getenv("MAR_LOCK_WINDOW_MINUTES", "120"))
    # Trailing days shown by the medication history (current day excluded).
    MAR_HISTORY_DAYS: int = int(os.getenv("MAR_HISTORY_DAYS", "7"))


settings = Settings()
