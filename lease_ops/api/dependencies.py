from typing import Generator

from fastapi import Depends
from sqlalchemy.orm import Session, sessionmaker

from ..config import SessionLocal
from ..services.store import LeaseStore


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_store(db: Session = Depends(get_db)) -> LeaseStore:
    return LeaseStore(db)


def get_session_factory() -> sessionmaker:
    return SessionLocal
