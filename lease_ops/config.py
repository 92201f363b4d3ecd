# lease_ops/config.py
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import EmailStr
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # --- Database ---
    database_url: str = "sqlite:///lease_ops.db"

    # --- Security / JWT ---
    jwt_secret: str = "dev-secret-please-change"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24  # 24 hours

    # --- Logging ---
    log_level: Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"] = "INFO"
    log_format: Literal["text", "json"] = "text"

    # --- Email ---
    email_backend: str = "local"
    sendgrid_api_key: str | None = None
    email_host: str | None = None
    email_port: int | None = 587
    email_host_user: str | None = None
    email_host_password: str | None = None
    email_use_tls: bool = True
    email_from_address: EmailStr | None = None
    email_from_name: str = "Gestion locative"
    email_reply_to: EmailStr | None = None
    email_output_dir: str = "outbox/emails"

    # --- Batch reconciliation ---
    reconciliation_max_workers: int = 4

    # --- Integration events ---
    event_emit_timeout_seconds: float = 2.0
    outbox_batch_size: int = 50
    outbox_max_retries: int = 3


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

# Ensure path directory exists (for SQLite)
if settings.database_url.startswith("sqlite:///"):
    db_path = Path(settings.database_url.replace("sqlite:///", ""))
    db_path.parent.mkdir(parents=True, exist_ok=True)

# --- SQLAlchemy setup ---
engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False}
    if settings.database_url.startswith("sqlite")
    else {},
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
