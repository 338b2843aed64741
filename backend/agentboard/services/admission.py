"""
Application admission and status changes.

Creation checks run in this order: the actor must be a candidate profile, the job
must be open, the rate limit must allow the attempt, and no open application may
exist for the (job, candidate) pair. The partial unique index on applications is
the authority for the last check; the pre-insert lookup only gives a friendlier
error. Activity records are written after the application commits and never undo it.
"""
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.application import APPLICATION_STATUSES, Application
from ..models.job import JobPosting
from ..models.profile import Profile
from ..utils.error_handlers import (
    DuplicateApplication,
    ForbiddenError,
    InvalidTransition,
    NotFoundError,
    RateLimitExceeded,
    ValidationError,
    get_error_message,
)
from .activity_log import record_activity
from .rate_limiter import RateLimiter, get_application_rate_limiter


logger = logging.getLogger(__name__)

MAX_COVER_LETTER_CHARS = 5000

# Moves the job-owning company may make. No skip-ahead; offered/rejected are terminal.
COMPANY_TRANSITIONS: dict[str, set[str]] = {
    "submitted": {"reviewed", "rejected"},
    "reviewed": {"interviewing", "rejected"},
    "interviewing": {"offered", "rejected"},
}

# The candidate can only withdraw an application that is still in progress.
CANDIDATE_TRANSITIONS: dict[str, set[str]] = {
    "submitted": {"withdrawn"},
    "reviewed": {"withdrawn"},
    "interviewing": {"withdrawn"},
}

TERMINAL_STATUSES = {"offered", "rejected", "withdrawn"}


def allowed_transitions(current: str, *, actor_role: str) -> set[str]:
    table = COMPANY_TRANSITIONS if actor_role == "company" else CANDIDATE_TRANSITIONS
    return set(table.get(current, set()))


def find_open_application(db: Session, *, candidate_id: int, job_id: int) -> Application | None:
    return (
        db.query(Application)
        .filter(
            Application.candidate_id == int(candidate_id),
            Application.job_id == int(job_id),
            Application.status != "withdrawn",
        )
        .order_by(Application.created_at.asc())
        .first()
    )


def submit_application(
    db: Session,
    candidate_id: int,
    job_id: int,
    cover_letter: str | None = None,
    *,
    limiter: RateLimiter | None = None,
) -> Application:
    candidate = db.query(Profile).filter(Profile.id == int(candidate_id)).first()
    if not candidate or candidate.profile_type != "candidate":
        raise ForbiddenError(get_error_message("candidate_only"))

    job = db.query(JobPosting).filter(JobPosting.id == int(job_id)).first()
    if not job:
        raise NotFoundError(get_error_message("job_not_found"))
    if job.status != "active":
        raise NotFoundError(get_error_message("job_closed"))

    if cover_letter is not None and len(cover_letter) > MAX_COVER_LETTER_CHARS:
        raise ValidationError(f"Cover letter too long (max {MAX_COVER_LETTER_CHARS} characters)")

    limiter = limiter or get_application_rate_limiter()
    decision = limiter.increment_and_check(candidate.id)
    if not decision.allowed:
        raise RateLimitExceeded(get_error_message("application_rate_limited"), remaining=decision.remaining)

    # Counted attempt from here on, even if the application turns out to be a duplicate.
    existing = find_open_application(db, candidate_id=candidate.id, job_id=job.id)
    if existing:
        raise DuplicateApplication(application_id=int(existing.id))

    application = Application(
        job_id=job.id,
        candidate_id=candidate.id,
        cover_letter=cover_letter,
        status="submitted",
    )
    db.add(application)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        existing = find_open_application(db, candidate_id=candidate.id, job_id=job.id)
        if existing:
            logger.info("Concurrent duplicate application candidate=%s job=%s", candidate.id, job.id)
            raise DuplicateApplication(application_id=int(existing.id)) from e
        raise
    db.refresh(application)
    logger.info("Application %s submitted candidate=%s job=%s", application.id, candidate.id, job.id)

    record_activity(
        db,
        profile_id=candidate.id,
        activity_type="application_submitted",
        data={"application_id": application.id, "job_id": job.id, "job_title": job.title},
    )
    record_activity(
        db,
        profile_id=job.company_profile_id,
        activity_type="application_received",
        data={
            "application_id": application.id,
            "job_id": job.id,
            "job_title": job.title,
            "candidate_id": candidate.id,
            "candidate_name": candidate.name,
        },
    )
    return application


def update_application_status(db: Session, application_id: int, actor_id: int, new_status: str) -> Application:
    requested = (new_status or "").strip().lower()
    if requested not in APPLICATION_STATUSES:
        raise InvalidTransition(
            None,
            new_status,
            message=f"Invalid status. Must be one of: {', '.join(APPLICATION_STATUSES)}",
        )

    application = db.query(Application).filter(Application.id == int(application_id)).first()
    if not application:
        raise NotFoundError(get_error_message("application_not_found"))

    job = application.job
    is_company = job is not None and job.company_profile_id == int(actor_id)
    is_candidate = application.candidate_id == int(actor_id)
    if not is_company and not is_candidate:
        raise ForbiddenError()

    actor_role = "company" if is_company else "candidate"
    current = application.status
    if current in TERMINAL_STATUSES:
        raise InvalidTransition(current, requested, message=f"Application is already {current}")
    if requested not in allowed_transitions(current, actor_role=actor_role):
        other_role = "candidate" if actor_role == "company" else "company"
        if requested in allowed_transitions(current, actor_role=other_role):
            raise ForbiddenError(f"Only the {other_role} can move an application to '{requested}'")
        raise InvalidTransition(current, requested)

    # Compare-and-set so two concurrent updates cannot both apply from the same state.
    updated = (
        db.query(Application)
        .filter(Application.id == application.id, Application.status == current)
        .update({Application.status: requested}, synchronize_session=False)
    )
    if not updated:
        db.rollback()
        db.refresh(application)
        raise InvalidTransition(application.status, requested)
    db.commit()
    db.refresh(application)
    logger.info("Application %s %s -> %s by %s=%s", application.id, current, requested, actor_role, actor_id)

    notify_id = application.candidate_id if is_company else job.company_profile_id
    record_activity(
        db,
        profile_id=notify_id,
        activity_type="application_status_changed",
        data={"application_id": application.id, "job_id": application.job_id, "from": current, "status": requested},
    )
    return application
