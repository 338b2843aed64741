from datetime import datetime
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import MATCH_DEFAULT_LIMIT, MATCH_MAX_LIMIT
from ..database import get_db
from ..models.application import Application
from ..models.job import JobPosting
from ..models.profile import Profile
from ..services.admission import submit_application
from ..services.embedding_provider import EmbeddingProvider, get_embedding_provider
from ..services.embedding_store import delete_embeddings
from ..services.match_cache import invalidate_anchor
from ..services.ranking import recommendations_or_recent
from ..services.rate_limiter import RateLimiter, get_application_rate_limiter, get_job_post_rate_limiter
from ..services.text_normalizer import parse_string_list
from ..utils.dependencies import get_current_user
from ..utils.error_handlers import RateLimitExceeded, get_error_message, handle_database_error
from ..utils.roles import company_only
from ..utils.validation import (
    validate_job_status,
    validate_salary_range,
    validate_string_field,
    validate_string_list,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["Jobs"])


def _iso(value):
    return value.isoformat() if isinstance(value, datetime) else value


def job_to_public(job: JobPosting) -> dict:
    company = job.company
    return {
        "id": job.id,
        "company_profile_id": job.company_profile_id,
        "company": {"id": company.id, "name": company.name} if company else None,
        "title": job.title,
        "description": job.description,
        "requirements": parse_string_list(job.requirements),
        "location": job.location,
        "remote": bool(job.remote),
        "salary_min": job.salary_min,
        "salary_max": job.salary_max,
        "currency": job.currency,
        "status": job.status,
        "created_at": _iso(job.created_at),
        "updated_at": _iso(job.updated_at),
    }


def application_to_public(application: Application) -> dict:
    return {
        "id": application.id,
        "job_id": application.job_id,
        "candidate_id": application.candidate_id,
        "cover_letter": application.cover_letter,
        "status": application.status,
        "created_at": _iso(application.created_at),
        "updated_at": _iso(application.updated_at),
    }


def _owned_job(db: Session, *, job_id: int, profile: Profile) -> JobPosting:
    job = db.query(JobPosting).filter(JobPosting.id == job_id).first()
    if not job:
        raise HTTPException(status_code=404, detail=get_error_message("job_not_found"))
    if job.company_profile_id != profile.id:
        raise HTTPException(status_code=403, detail="You can only manage your own job postings")
    return job


class JobCreate(BaseModel):
    title: str = Field(min_length=2, max_length=150)
    description: str = Field(min_length=10)
    requirements: list[str] | None = None
    location: str | None = Field(default=None, max_length=100)
    remote: bool = False
    salary_min: int | None = Field(default=None, ge=0)
    salary_max: int | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, max_length=5)
    status: str | None = Field(default="active")


class JobUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=2, max_length=150)
    description: str | None = Field(default=None, min_length=10)
    requirements: list[str] | None = None
    location: str | None = Field(default=None, max_length=100)
    remote: bool | None = None
    salary_min: int | None = Field(default=None, ge=0)
    salary_max: int | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, max_length=5)
    status: str | None = None


class ApplyRequest(BaseModel):
    cover_letter: str | None = None


@router.post("", status_code=201)
def create_job(
    payload: JobCreate,
    db: Session = Depends(get_db),
    profile: Profile = Depends(company_only),
    limiter: RateLimiter = Depends(get_job_post_rate_limiter),
):
    title = validate_string_field(payload.title, "Title", min_length=2, max_length=150)
    description = validate_string_field(payload.description, "Description", min_length=10, max_length=20000)
    status = validate_job_status(payload.status)
    validate_salary_range(payload.salary_min, payload.salary_max)

    decision = limiter.increment_and_check(profile.id)
    if not decision.allowed:
        raise RateLimitExceeded(get_error_message("job_rate_limited"), remaining=decision.remaining)

    job = JobPosting(
        company_profile_id=profile.id,
        title=title,
        description=description,
        requirements=json.dumps(validate_string_list(payload.requirements, "Requirements"), ensure_ascii=False),
        location=validate_string_field(payload.location, "Location", max_length=100, required=False),
        remote=bool(payload.remote),
        salary_min=payload.salary_min,
        salary_max=payload.salary_max,
        currency=(payload.currency or "USD").strip().upper(),
        status=status,
    )
    try:
        db.add(job)
        db.commit()
        db.refresh(job)
    except SQLAlchemyError as e:
        db.rollback()
        raise handle_database_error(e, "creating job")

    logger.info("Job %s created by company=%s", job.id, profile.id)
    return {"success": True, "job_id": job.id, "job": job_to_public(job)}


@router.get("")
def list_jobs(
    remote: bool | None = Query(default=None),
    location: str | None = Query(default=None, max_length=100),
    status: str | None = Query(default=None, description="draft/active/paused/filled/closed"),
    sort: str = Query(default="recent", pattern="^(recent|match)$"),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    provider: EmbeddingProvider = Depends(get_embedding_provider),
):
    viewer = db.query(Profile).filter(Profile.id == int(user["profile_id"])).first()
    is_candidate = viewer is not None and viewer.profile_type == "candidate"

    q = db.query(JobPosting)
    # Candidates only ever see active jobs.
    status_norm = validate_job_status(status) if status and not is_candidate else "active"
    q = q.filter(JobPosting.status == status_norm)
    if remote is True:
        q = q.filter(JobPosting.remote.is_(True))
    if location:
        q = q.filter(func.lower(JobPosting.location).contains(location.strip().lower()))

    jobs = q.order_by(JobPosting.created_at.desc(), JobPosting.id.desc()).all()
    items = [job_to_public(j) for j in jobs]

    scored = False
    if is_candidate:
        # Every listed job is active and therefore in the pool; score them all.
        ranked = recommendations_or_recent(db, viewer.id, "candidate", None, provider=provider)
        scored = ranked["scored"]
        scores = {row["target_id"]: row["score"] for row in ranked["matches"]} if scored else {}
        for item in items:
            item["match_score"] = scores.get(item["id"])
        if sort == "match" and scored:
            # Stable sort keeps newest-first among equal/missing scores.
            items.sort(key=lambda it: -(it["match_score"] or 0))

    return {"success": True, "jobs": items, "scored": scored}


@router.get("/{job_id:int}")
def get_job(
    job_id: int,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    job = db.query(JobPosting).filter(JobPosting.id == job_id).first()
    if not job:
        raise HTTPException(status_code=404, detail=get_error_message("job_not_found"))
    if job.status != "active" and job.company_profile_id != int(user["profile_id"]):
        raise HTTPException(status_code=404, detail=get_error_message("job_not_found"))
    return {"success": True, "job": job_to_public(job)}


@router.patch("/{job_id:int}")
def update_job(
    job_id: int,
    payload: JobUpdate,
    db: Session = Depends(get_db),
    profile: Profile = Depends(company_only),
):
    job = _owned_job(db, job_id=job_id, profile=profile)
    fields = payload.model_fields_set

    if "title" in fields:
        job.title = validate_string_field(payload.title, "Title", min_length=2, max_length=150)
    if "description" in fields:
        job.description = validate_string_field(payload.description, "Description", min_length=10, max_length=20000)
    if "requirements" in fields:
        job.requirements = json.dumps(validate_string_list(payload.requirements, "Requirements"), ensure_ascii=False)
    if "location" in fields:
        job.location = validate_string_field(payload.location, "Location", max_length=100, required=False)
    if "remote" in fields and payload.remote is not None:
        job.remote = bool(payload.remote)
    if "salary_min" in fields:
        job.salary_min = payload.salary_min
    if "salary_max" in fields:
        job.salary_max = payload.salary_max
    if "currency" in fields and payload.currency:
        job.currency = payload.currency.strip().upper()
    if "status" in fields and payload.status:
        job.status = validate_job_status(payload.status)
    validate_salary_range(job.salary_min, job.salary_max)

    try:
        db.add(job)
        db.commit()
        db.refresh(job)
    except SQLAlchemyError as e:
        db.rollback()
        raise handle_database_error(e, "updating job")
    return {"success": True, "job": job_to_public(job)}


@router.delete("/{job_id:int}", status_code=200)
def delete_job(
    job_id: int,
    db: Session = Depends(get_db),
    profile: Profile = Depends(company_only),
):
    job = _owned_job(db, job_id=job_id, profile=profile)
    try:
        delete_embeddings(db, entity_type="job", entity_id=job.id)
        invalidate_anchor(db, anchor_kind="job", anchor_id=job.id)
        # ORM cascade removes the job's applications.
        db.delete(job)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise handle_database_error(e, "deleting job")
    return {"success": True, "deleted_job_id": int(job_id)}


@router.get("/{job_id:int}/matches")
def job_matches(
    job_id: int,
    limit: int = Query(default=MATCH_DEFAULT_LIMIT, ge=1, le=MATCH_MAX_LIMIT),
    db: Session = Depends(get_db),
    profile: Profile = Depends(company_only),
    provider: EmbeddingProvider = Depends(get_embedding_provider),
):
    job = _owned_job(db, job_id=job_id, profile=profile)
    ranked = recommendations_or_recent(db, job.id, "job", limit, provider=provider)

    ids = [row["target_id"] for row in ranked["matches"]]
    candidates = {p.id: p for p in db.query(Profile).filter(Profile.id.in_(ids)).all()} if ids else {}
    items = []
    for row in ranked["matches"]:
        cand = candidates.get(row["target_id"])
        if not cand:
            continue
        items.append(
            {
                "candidate_id": cand.id,
                "name": cand.name,
                "headline": cand.headline,
                "skills": parse_string_list(cand.skills),
                "match_score": row["score"],
            }
        )
    return {"success": True, "job_id": job.id, "scored": ranked["scored"], "matches": items}


@router.post("/{job_id:int}/apply", status_code=201)
def apply_to_job(
    job_id: int,
    payload: ApplyRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    limiter: RateLimiter = Depends(get_application_rate_limiter),
):
    """
    Candidate applies with an optional cover letter. Only candidate profiles may apply;
    the daily application limit and duplicate check are enforced by the admission service.
    """
    application = submit_application(
        db,
        int(user["profile_id"]),
        job_id,
        payload.cover_letter,
        limiter=limiter,
    )
    return {"success": True, "application_id": application.id, "application": application_to_public(application)}


@router.get("/{job_id:int}/applications")
def job_applications(
    job_id: int,
    db: Session = Depends(get_db),
    profile: Profile = Depends(company_only),
):
    job = _owned_job(db, job_id=job_id, profile=profile)
    apps = (
        db.query(Application)
        .filter(Application.job_id == job.id)
        .order_by(Application.created_at.desc(), Application.id.desc())
        .all()
    )
    items = []
    for a in apps:
        cand = a.candidate
        payload = application_to_public(a)
        payload["candidate"] = {
            "id": cand.id if cand else None,
            "name": cand.name if cand else None,
            "headline": cand.headline if cand else None,
        }
        items.append(payload)
    return {"success": True, "job": job_to_public(job), "applications": items}
