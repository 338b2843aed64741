from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.activity_log import activity_to_public, list_activities
from ..utils.dependencies import get_current_user

router = APIRouter(prefix="/activities", tags=["Activities"])


@router.get("")
def my_activities(
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    items = list_activities(db, profile_id=int(user["profile_id"]))
    return {"success": True, "activities": [activity_to_public(a) for a in items]}
