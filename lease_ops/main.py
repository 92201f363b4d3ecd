import logging
import uuid

from fastapi import FastAPI, Request
from sqlalchemy.orm import Session

from .api import delinquency, events, reconciliations, system
from .config import Base, SessionLocal, engine, settings
from .constants import DEFAULT_ROLES
from .core.errors import register_exception_handlers
from .core.logging import configure_logging
from .models.models import Role

REQUEST_ID_HEADER = "X-Request-ID"

configure_logging(settings.log_level, settings.log_format)
logger = logging.getLogger(__name__)

app = FastAPI(title="Lease Financial Operations")
register_exception_handlers(app)


def ensure_default_roles(session: Session) -> None:
    for name, description in DEFAULT_ROLES:
        role = session.query(Role).filter(Role.name == name).first()
        if not role:
            session.add(Role(name=name, description=description))
    session.commit()


@app.on_event("startup")
def startup() -> None:
    # In dev we make sure tables exist. Alembic migrations should be used for real schema evolution.
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as session:
        ensure_default_roles(session)
    logger.info("Lease operations API started (email backend: %s).", settings.email_backend)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


app.include_router(reconciliations.router, prefix="/reconciliations", tags=["reconciliations"])
app.include_router(delinquency.router, prefix="/delinquency", tags=["delinquency"])
app.include_router(events.router, prefix="/events", tags=["events"])
app.include_router(system.router, prefix="/system", tags=["system"])
