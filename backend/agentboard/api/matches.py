from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..config import MATCH_DEFAULT_LIMIT, MATCH_MAX_LIMIT
from ..database import get_db
from ..models.job import JobPosting
from ..models.profile import Profile
from ..services.embedding_provider import EmbeddingProvider, get_embedding_provider
from ..services.ranking import recommendations_or_recent
from ..utils.roles import candidate_only
from .jobs import job_to_public

router = APIRouter(prefix="/matches", tags=["Matching"])


@router.get("/jobs")
def matched_jobs(
    limit: int = Query(default=MATCH_DEFAULT_LIMIT, ge=1, le=MATCH_MAX_LIMIT),
    db: Session = Depends(get_db),
    profile: Profile = Depends(candidate_only),
    provider: EmbeddingProvider = Depends(get_embedding_provider),
):
    """Jobs ranked for the calling candidate; newest jobs unscored when matching is down."""
    ranked = recommendations_or_recent(db, profile.id, "candidate", limit, provider=provider)

    ids = [row["target_id"] for row in ranked["matches"]]
    jobs = {j.id: j for j in db.query(JobPosting).filter(JobPosting.id.in_(ids)).all()} if ids else {}
    items = []
    for row in ranked["matches"]:
        job = jobs.get(row["target_id"])
        if not job:
            continue
        items.append({"job": job_to_public(job), "match_score": row["score"]})
    return {"success": True, "scored": ranked["scored"], "matches": items}
