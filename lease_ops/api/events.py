from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.jwt import require_roles
from ..models.models import User
from ..schemas.schemas import OutboxRunRead
from ..services.audit import audit_log
from ..services.events import process_outbox
from .dependencies import get_db

router = APIRouter()


@router.post("/outbox/process", response_model=OutboxRunRead)
def process_outbox_events(
    db: Session = Depends(get_db),
    actor: User = Depends(require_roles("ADMIN")),
) -> OutboxRunRead:
    summary = process_outbox(db)
    audit_log(
        db_session=db,
        actor_user_id=actor.id,
        action="events.outbox.process",
        target_entity_type="Outbox",
        after={"processed": summary.processed, "failed": summary.failed, "total": summary.total},
    )
    return OutboxRunRead.model_validate(summary)
