from datetime import datetime
import json
import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.activity import Activity
from ..models.profile import Profile
from ..services.embedding_store import delete_embeddings
from ..services.match_cache import invalidate_anchor
from ..services.text_normalizer import parse_string_list
from ..utils.dependencies import get_current_profile, get_current_user
from ..utils.error_handlers import get_error_message, handle_database_error
from ..utils.validation import validate_profile_type, validate_string_field, validate_string_list

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/profiles", tags=["Profiles"])


def _iso(value):
    return value.isoformat() if isinstance(value, datetime) else value


def profile_to_public(profile: Profile) -> dict:
    return {
        "id": profile.id,
        "profile_type": profile.profile_type,
        "name": profile.name,
        "headline": profile.headline,
        "bio": profile.bio,
        "location": profile.location,
        "skills": parse_string_list(profile.skills),
        "created_at": _iso(profile.created_at),
        "updated_at": _iso(profile.updated_at),
    }


class ProfileCreate(BaseModel):
    profile_type: str  # candidate / company
    name: str = Field(min_length=1, max_length=255)
    headline: str | None = Field(default=None, max_length=255)
    bio: str | None = Field(default=None, max_length=5000)
    location: str | None = Field(default=None, max_length=100)
    skills: list[str] | None = None


class ProfileUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    headline: str | None = Field(default=None, max_length=255)
    bio: str | None = Field(default=None, max_length=5000)
    location: str | None = Field(default=None, max_length=100)
    skills: list[str] | None = None


@router.post("", status_code=201)
def create_profile(
    payload: ProfileCreate,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    profile_id = int(user["profile_id"])
    profile_type = validate_profile_type(payload.profile_type)
    name = validate_string_field(payload.name, "Name", max_length=255)

    existing = db.query(Profile).filter(Profile.id == profile_id).first()
    if existing:
        raise HTTPException(status_code=400, detail=get_error_message("profile_exists"))

    profile = Profile(
        id=profile_id,
        profile_type=profile_type,
        name=name,
        headline=validate_string_field(payload.headline, "Headline", max_length=255, required=False),
        bio=validate_string_field(payload.bio, "Bio", max_length=5000, required=False),
        location=validate_string_field(payload.location, "Location", max_length=100, required=False),
        skills=json.dumps(validate_string_list(payload.skills, "Skills"), ensure_ascii=False),
    )
    try:
        db.add(profile)
        db.commit()
        db.refresh(profile)
    except SQLAlchemyError as e:
        db.rollback()
        raise handle_database_error(e, "creating profile")

    logger.info("Profile %s created type=%s", profile.id, profile.profile_type)
    return {"success": True, "profile_id": profile.id, "profile": profile_to_public(profile)}


@router.get("/me")
def my_profile(profile: Profile = Depends(get_current_profile)):
    return {"success": True, "profile": profile_to_public(profile)}


@router.get("/{profile_id:int}")
def get_profile(
    profile_id: int,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    profile = db.query(Profile).filter(Profile.id == profile_id).first()
    if not profile:
        raise HTTPException(status_code=404, detail=get_error_message("profile_not_found"))
    return {"success": True, "profile": profile_to_public(profile)}


@router.patch("/me")
def update_profile(
    payload: ProfileUpdate,
    db: Session = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
):
    fields = payload.model_fields_set
    if "name" in fields:
        profile.name = validate_string_field(payload.name, "Name", max_length=255)
    if "headline" in fields:
        profile.headline = validate_string_field(payload.headline, "Headline", max_length=255, required=False)
    if "bio" in fields:
        profile.bio = validate_string_field(payload.bio, "Bio", max_length=5000, required=False)
    if "location" in fields:
        profile.location = validate_string_field(payload.location, "Location", max_length=100, required=False)
    if "skills" in fields:
        profile.skills = json.dumps(validate_string_list(payload.skills, "Skills"), ensure_ascii=False)

    # No embedding work here: the changed fingerprint makes the next ranking refresh it.
    try:
        db.add(profile)
        db.commit()
        db.refresh(profile)
    except SQLAlchemyError as e:
        db.rollback()
        raise handle_database_error(e, "updating profile")
    return {"success": True, "profile": profile_to_public(profile)}


@router.delete("/me")
def delete_profile(
    db: Session = Depends(get_db),
    profile: Profile = Depends(get_current_profile),
):
    profile_id = int(profile.id)
    job_ids = [int(j.id) for j in profile.jobs]
    try:
        delete_embeddings(db, entity_type="profile", entity_id=profile_id)
        invalidate_anchor(db, anchor_kind="candidate", anchor_id=profile_id)
        for job_id in job_ids:
            delete_embeddings(db, entity_type="job", entity_id=job_id)
            invalidate_anchor(db, anchor_kind="job", anchor_id=job_id)
        db.query(Activity).filter(Activity.profile_id == profile_id).delete(synchronize_session=False)
        # ORM cascades remove the profile's jobs and applications.
        db.delete(profile)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise handle_database_error(e, "deleting profile")

    logger.info("Profile %s deleted with %s jobs", profile_id, len(job_ids))
    return {"success": True, "deleted_profile_id": profile_id}
