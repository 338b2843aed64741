import json
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.activity import Activity


logger = logging.getLogger(__name__)

FEED_LIMIT = 20


def record_activity(db: Session, *, profile_id: int, activity_type: str, data: dict[str, Any] | None = None) -> bool:
    """
    Best-effort append to a profile's activity log. Commits on its own; a failure is
    logged and rolled back without touching anything committed before.
    """
    try:
        db.add(
            Activity(
                profile_id=int(profile_id),
                activity_type=activity_type,
                data_json=json.dumps(data or {}, ensure_ascii=False, default=str),
            )
        )
        db.commit()
        return True
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("Failed to record %s activity for profile=%s: %s", activity_type, profile_id, e)
        return False


def activity_to_public(a: Activity) -> dict[str, Any]:
    try:
        data = json.loads(a.data_json) if a.data_json else {}
    except ValueError:
        data = {}
    return {
        "id": a.id,
        "activity_type": a.activity_type,
        "data": data,
        "created_at": a.created_at.isoformat() if a.created_at else None,
    }


def list_activities(db: Session, *, profile_id: int, limit: int = FEED_LIMIT) -> list[Activity]:
    return (
        db.query(Activity)
        .filter(Activity.profile_id == int(profile_id))
        .order_by(Activity.created_at.desc(), Activity.id.desc())
        .limit(int(limit))
        .all()
    )
