from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from bookingcore import auth
from bookingcore.admission import AdmissionEngine
from bookingcore.database import get_db
from bookingcore.dependencies import Actor, get_actor, get_admission_engine, require_privileged
from bookingcore.models import PRIVILEGED_ROLES, ReservationStatus, RoleEnum, User
from bookingcore.schemas import ReservationRead, Token, UserCreate, UserRead, UserUpdate
from bookingcore.service_app import create_service_app, limiter

app = create_service_app("Users Service", "users")


def _get_user_or_404(db: Session, username: str) -> User:
    user = db.query(User).filter(User.username == username).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def _ensure_self_or_admin(actor: Actor, username: str) -> None:
    if not actor.is_privileged and actor.username != username:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")


@app.post("/users/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
def register_user(request: Request, user_in: UserCreate, db: Session = Depends(get_db)) -> User:
    if db.query(User).filter((User.username == user_in.username) | (User.email == user_in.email)).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username or email already exists")

    # only the very first account may grant itself an elevated role
    privileged_exist = db.query(User).filter(User.role.in_(PRIVILEGED_ROLES)).first() is not None
    if user_in.role != RoleEnum.REGULAR and privileged_exist:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only admins can assign elevated roles")

    user = User(
        name=user_in.name,
        username=user_in.username,
        email=user_in.email,
        role=user_in.role,
        hashed_password=auth.get_password_hash(user_in.password),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@app.post("/users/login", response_model=Token)
@limiter.limit("10/minute")
def login(request: Request, form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)) -> Token:
    user = auth.authenticate_user(db, form_data.username, form_data.password)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect username or password")
    return Token(access_token=auth.issue_token_for(user))


@app.get("/users", response_model=list[UserRead])
@limiter.limit("20/minute")
def list_users(request: Request, _: Actor = Depends(require_privileged), db: Session = Depends(get_db)) -> list[User]:
    return db.query(User).order_by(User.id).all()


@app.get("/users/{username}", response_model=UserRead)
@limiter.limit("30/minute")
def get_user(
    request: Request,
    username: str,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
) -> User:
    user = _get_user_or_404(db, username)
    _ensure_self_or_admin(actor, username)
    return user


@app.put("/users/{username}", response_model=UserRead)
@limiter.limit("10/minute")
def update_user(
    request: Request,
    username: str,
    user_update: UserUpdate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
) -> User:
    user = _get_user_or_404(db, username)
    _ensure_self_or_admin(actor, username)

    if user_update.name:
        user.name = user_update.name
    if user_update.email:
        user.email = user_update.email
    if user_update.role and actor.is_privileged:
        user.role = user_update.role
    if user_update.password:
        user.hashed_password = auth.get_password_hash(user_update.password)

    db.commit()
    db.refresh(user)
    return user


@app.delete("/users/{username}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("5/minute")
def delete_user(
    request: Request,
    username: str,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
) -> None:
    user = _get_user_or_404(db, username)
    _ensure_self_or_admin(actor, username)
    db.delete(user)
    db.commit()


@app.get("/users/{username}/reservations", response_model=list[ReservationRead])
@limiter.limit("30/minute")
def user_reservation_history(
    request: Request,
    username: str,
    status_filter: ReservationStatus | None = None,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    engine: AdmissionEngine = Depends(get_admission_engine),
) -> list:
    user = _get_user_or_404(db, username)
    _ensure_self_or_admin(actor, username)
    return engine.list_for_requester(user.id, status=status_filter)
