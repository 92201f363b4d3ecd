import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth.jwt import require_roles
from ..config import settings
from ..services import email as email_service
from .dependencies import get_db

logger = logging.getLogger(__name__)

router = APIRouter()

require_admin = require_roles("ADMIN")


class TestEmailRequest(BaseModel):
    recipient: EmailStr
    subject: Optional[str] = "Test de notification"
    body: Optional[str] = "Ceci est un message de test du module de relances."


class TestEmailResponse(BaseModel):
    backend: str
    success: bool
    status_code: Optional[int]
    request_id: Optional[str]
    error: Optional[str]


@router.get("/health")
def health(db: Session = Depends(get_db)) -> Dict[str, str]:
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError:
        logger.exception("Health check could not reach the database.")
        database = "unavailable"
    return {"status": "ok" if database == "ok" else "degraded", "database": database}


@router.get("/runtime", dependencies=[Depends(require_admin)])
def get_runtime_diagnostics() -> Dict[str, Any]:
    """Expose non-sensitive runtime settings for debugging."""
    return {
        "email_backend": settings.email_backend,
        "email_host": settings.email_host,
        "email_port": settings.email_port,
        "email_use_tls": settings.email_use_tls,
        "sendgrid_configured": bool(settings.sendgrid_api_key),
        "reconciliation_max_workers": settings.reconciliation_max_workers,
        "event_emit_timeout_seconds": settings.event_emit_timeout_seconds,
        "outbox_batch_size": settings.outbox_batch_size,
        "outbox_max_retries": settings.outbox_max_retries,
        "log_format": settings.log_format,
    }


@router.post("/test-email", response_model=TestEmailResponse, dependencies=[Depends(require_admin)])
def send_test_email(payload: TestEmailRequest) -> TestEmailResponse:
    result = email_service.send_notification(payload.subject or "", payload.body or "", str(payload.recipient))
    return TestEmailResponse(
        backend=result.backend,
        success=result.error is None,
        status_code=result.status_code,
        request_id=result.request_id,
        error=result.error,
    )
