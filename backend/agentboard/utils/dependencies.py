from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.profile import Profile
from .error_handlers import get_error_message
from .jwt import decode_access_token

_bearer = HTTPBearer(auto_error=False)


def get_current_user(credentials: HTTPAuthorizationCredentials | None = Depends(_bearer)) -> dict:
    """
    Claims of the verified bearer token. `sub` is the account id, which is also the
    id of the account's profile once one has been created.
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail=get_error_message("unauthorized"))

    payload = decode_access_token(credentials.credentials)
    if not payload or not payload.get("sub"):
        raise HTTPException(status_code=401, detail=get_error_message("unauthorized"))

    try:
        payload["profile_id"] = int(payload["sub"])
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail=get_error_message("unauthorized"))
    return payload


def get_current_profile(user: dict = Depends(get_current_user), db: Session = Depends(get_db)) -> Profile:
    profile = db.query(Profile).filter(Profile.id == int(user["profile_id"])).first()
    if not profile:
        raise HTTPException(status_code=404, detail=get_error_message("profile_not_found"))
    return profile
