import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.application import Application
from ..services.admission import update_application_status
from ..utils.dependencies import get_current_user
from ..utils.error_handlers import get_error_message
from .jobs import application_to_public

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/applications", tags=["Applications"])


class StatusUpdate(BaseModel):
    status: str


def _with_job(a: Application) -> dict:
    payload = application_to_public(a)
    job = a.job
    payload["job"] = {
        "id": job.id,
        "title": job.title,
        "company_name": job.company.name if job.company else None,
    } if job else None
    return payload


@router.get("")
def my_applications(
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    apps = (
        db.query(Application)
        .filter(Application.candidate_id == int(user["profile_id"]))
        .order_by(Application.created_at.desc(), Application.id.desc())
        .all()
    )
    return {"success": True, "applications": [_with_job(a) for a in apps]}


@router.get("/{application_id:int}")
def application_details(
    application_id: int,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    a = db.query(Application).filter(Application.id == application_id).first()
    if not a:
        raise HTTPException(status_code=404, detail=get_error_message("application_not_found"))

    # Visible to the applicant and to the company that owns the job.
    profile_id = int(user["profile_id"])
    if a.candidate_id != profile_id and (not a.job or a.job.company_profile_id != profile_id):
        raise HTTPException(status_code=403, detail=get_error_message("forbidden"))
    return {"success": True, "application": _with_job(a)}


@router.patch("/{application_id:int}")
def change_application_status(
    application_id: int,
    payload: StatusUpdate,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    a = update_application_status(db, application_id, int(user["profile_id"]), payload.status)
    return {"success": True, "application": application_to_public(a)}
