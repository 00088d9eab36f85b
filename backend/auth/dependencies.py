import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from backend.auth import jwt_handler
from backend.database import get_db
from backend.models.mechanic import MechanicProfile
from backend.models.user import User

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


def resolve_user(token: str, db: Session) -> User:
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    subject = payload.get("sub")
    if not subject or not str(subject).isdigit():
        raise HTTPException(status_code=401, detail="Invalid token subject")

    user = db.query(User).filter(User.id == int(subject)).first()
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    return resolve_user(credentials.credentials, db)


def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_security),
    db: Session = Depends(get_db),
) -> User | None:
    if credentials is None:
        return None
    return resolve_user(credentials.credentials, db)


def resolve_mechanic(user: User, db: Session) -> MechanicProfile:
    if user.role != "mechanic":
        raise HTTPException(status_code=403, detail="Mechanic account required")

    profile = db.query(MechanicProfile).filter(MechanicProfile.user_id == user.id).first()
    if profile is None:
        raise HTTPException(status_code=403, detail="Mechanic profile not found")
    return profile


def get_current_mechanic(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> MechanicProfile:
    return resolve_mechanic(current_user, db)
