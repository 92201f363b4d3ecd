from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import sessionmaker

from ..auth.jwt import get_current_user
from ..models.models import User
from ..schemas.schemas import ReconciliationRead, ReconciliationRunRead, ReconciliationRunRequest
from ..services.authorization import load_lease_for, visible_lease_ids
from ..services.batch import run_batch
from ..services.events import EventEmitter
from ..services.store import LeaseStore
from .dependencies import get_session_factory, get_store

router = APIRouter()


@router.post("/run", response_model=ReconciliationRunRead)
def run_reconciliation(
    payload: ReconciliationRunRequest,
    store: LeaseStore = Depends(get_store),
    session_factory: sessionmaker = Depends(get_session_factory),
    user: User = Depends(get_current_user),
) -> ReconciliationRunRead:
    with EventEmitter(session_factory) as emitter:
        result = run_batch(
            store,
            payload.scope,
            payload.year,
            user=user,
            lease_id=payload.lease_id,
            emitter=emitter,
            session_factory=session_factory,
        )
    return ReconciliationRunRead.model_validate(result)


@router.get("", response_model=List[ReconciliationRead])
def list_reconciliations(
    lease_id: Optional[int] = Query(default=None),
    year: Optional[int] = Query(default=None),
    store: LeaseStore = Depends(get_store),
    user: User = Depends(get_current_user),
) -> List[ReconciliationRead]:
    if lease_id is not None:
        load_lease_for(user, store, lease_id)
        records = store.list_reconciliations([lease_id], year)
    else:
        records = store.list_reconciliations(visible_lease_ids(user, store), year)
    return [ReconciliationRead.model_validate(record) for record in records]
