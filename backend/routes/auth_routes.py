from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import jwt
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth import jwt_handler, oauth, passwords
from backend.auth.dependencies import get_current_user
from backend.core import config
from backend.database import get_db
from backend.models.mechanic import MechanicProfile
from backend.models.user import CustomerProfile, User
from backend.routes.errors import DATABASE_UNAVAILABLE_DETAIL

router = APIRouter(tags=["auth"])

ROLES = {"customer", "mechanic"}
OAUTH_STATE_MINUTES = 10
OAUTH_STATE_SUBJECT = "oauth-state"


class SignupRequest(BaseModel):
    email: str
    password: str
    role: str = "customer"
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        normalized = value.strip().lower()
        if "@" not in normalized:
            raise ValueError("A valid email address is required.")
        return normalized

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < passwords.MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {passwords.MIN_PASSWORD_LENGTH} characters.")
        return value

    @field_validator("role")
    @classmethod
    def validate_role(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in ROLES:
            raise ValueError("Role must be customer or mechanic.")
        return normalized


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        return value.strip().lower()


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str


def issue_token(user: User) -> TokenResponse:
    token = jwt_handler.create_access_token(subject=str(user.id), role=user.role)
    return TokenResponse(access_token=token, role=user.role)


def create_profile_for(user: User, db: Session, first_name=None, last_name=None, phone=None) -> None:
    if user.role == "mechanic":
        db.add(MechanicProfile(user_id=user.id, first_name=first_name, last_name=last_name, phone=phone))
    else:
        db.add(
            CustomerProfile(
                user_id=user.id,
                first_name=first_name,
                last_name=last_name,
                phone=phone,
                auth_method=user.auth_provider,
            )
        )


@router.post("/signup", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def signup(data: SignupRequest, db: Session = Depends(get_db)):
    try:
        if db.query(User).filter(User.email == data.email).first() is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="An account with this email already exists.")

        user = User(
            email=data.email,
            hashed_password=passwords.hash_password(data.password),
            role=data.role,
            auth_provider="email",
        )
        db.add(user)
        db.flush()
        create_profile_for(user, db, data.first_name, data.last_name, data.phone)
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc

    return issue_token(user)


@router.post("/login", response_model=TokenResponse)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    try:
        user = db.query(User).filter(User.email == data.email).first()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc

    if user is None or not passwords.verify_password(data.password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")
    return issue_token(user)


@router.get("/oauth/google/login")
def google_login(role: str = Query(default="customer")):
    normalized_role = role.strip().lower()
    if normalized_role not in ROLES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Role must be customer or mechanic.")

    state = jwt_handler.create_access_token(
        subject=OAUTH_STATE_SUBJECT,
        role=normalized_role,
        expires_minutes=OAUTH_STATE_MINUTES,
    )
    try:
        return RedirectResponse(url=oauth.build_authorize_url(state))
    except oauth.OAuthError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


def upsert_oauth_user(identity: dict, role: str, db: Session) -> User:
    user = (
        db.query(User)
        .filter((User.oauth_subject == identity["subject"]) | (User.email == identity["email"]))
        .first()
    )
    if user is None:
        user = User(
            email=identity["email"],
            hashed_password=None,
            role=role,
            auth_provider="google",
            oauth_subject=identity["subject"],
        )
        db.add(user)
        db.flush()
        first_name, _, last_name = (identity.get("name") or "").partition(" ")
        create_profile_for(user, db, first_name or None, last_name or None)
    else:
        user.oauth_subject = user.oauth_subject or identity["subject"]
    db.commit()
    db.refresh(user)
    return user


@router.get("/callback")
def oauth_callback(code: str = Query(...), state: str = Query(...), db: Session = Depends(get_db)):
    try:
        state_payload = jwt_handler.decode_access_token(state)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid sign-in state") from exc
    if state_payload.get("sub") != OAUTH_STATE_SUBJECT:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid sign-in state")

    try:
        identity = oauth.fetch_google_identity(code)
    except oauth.OAuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc

    try:
        user = upsert_oauth_user(identity, state_payload.get("role", "customer"), db)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc

    token = issue_token(user)
    if config.FRONTEND_AUTH_REDIRECT_URL:
        parsed = urlparse(config.FRONTEND_AUTH_REDIRECT_URL)
        query = dict(parse_qsl(parsed.query))
        query.update({"access_token": token.access_token, "token_type": "bearer"})
        redirect_url = urlunparse(parsed._replace(query=urlencode(query)))
        return RedirectResponse(url=redirect_url)
    return token


@router.get("/me")
def me(current_user: User = Depends(get_current_user)):
    return {"id": current_user.id, "email": current_user.email, "role": current_user.role}
