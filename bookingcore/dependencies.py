"""Reusable FastAPI dependencies for auth, database access and the admission engine.

This is the only place where a caller's role is turned into the
``actor_is_privileged`` flag the reservation core works with.
"""
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from .admission import AdmissionEngine
from .auth import decode_token
from .database import get_db
from .interval_index import IntervalIndex, SqlIntervalIndex
from .locks import ResourceLocks
from .models import User

oauth_scheme = OAuth2PasswordBearer(tokenUrl="/users/login")


@dataclass(frozen=True)
class Actor:
    id: int
    username: str
    is_privileged: bool


def get_current_user(token: str = Depends(oauth_scheme), db: Session = Depends(get_db)) -> User:
    payload = decode_token(token)
    username: str | None = payload.get("sub")
    if username is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing subject in token")
    user = db.query(User).filter(User.username == username).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


def get_actor(current_user: User = Depends(get_current_user)) -> Actor:
    return Actor(id=current_user.id, username=current_user.username, is_privileged=current_user.is_privileged)


def require_privileged(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_privileged:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    return actor


def get_resource_locks(request: Request) -> ResourceLocks:
    locks = getattr(request.app.state, "resource_locks", None)
    if locks is None:
        locks = request.app.state.resource_locks = ResourceLocks()
    return locks


def get_interval_index(request: Request, db: Session = Depends(get_db)) -> IntervalIndex:
    """The app's shared index when one was warmed at startup, else a SQL index on this session."""

    index = getattr(request.app.state, "interval_index", None)
    return index if index is not None else SqlIntervalIndex(db)


def get_admission_engine(
    request: Request,
    db: Session = Depends(get_db),
    locks: ResourceLocks = Depends(get_resource_locks),
    index: IntervalIndex = Depends(get_interval_index),
) -> AdmissionEngine:
    publisher = getattr(request.app.state, "event_publisher", None)
    return AdmissionEngine(db, locks, index, publisher=publisher)
