import json


def _create_profile(client, headers, profile_id: int, profile_type: str, **fields):
    body = {"profile_type": profile_type, "name": fields.pop("name", f"Profile {profile_id}"), **fields}
    return client.post("/profiles", headers=headers(profile_id), json=body)


def _create_job(client, headers, company_id: int, **fields):
    body = {
        "title": fields.pop("title", "Backend Engineer"),
        "description": fields.pop("description", "Build python services and APIs"),
        **fields,
    }
    return client.post("/jobs", headers=headers(company_id), json=body)


def test_requests_without_token_are_rejected(client):
    r = client.get("/jobs")
    assert r.status_code == 401
    assert r.json()["success"] is False


def test_profile_lifecycle(client, headers):
    r = _create_profile(client, headers, 1, "candidate", name="Ada", headline="Python dev", skills=["python", "python", " data "])
    assert r.status_code == 201, r.text
    profile = r.json()["profile"]
    assert profile["id"] == 1
    assert profile["skills"] == ["python", "data"]

    assert _create_profile(client, headers, 1, "candidate", name="Again").status_code == 400

    r = client.patch("/profiles/me", headers=headers(1), json={"bio": "I love data"})
    assert r.status_code == 200
    assert r.json()["profile"]["bio"] == "I love data"
    assert r.json()["profile"]["headline"] == "Python dev"

    r = client.get("/profiles/1", headers=headers(2))
    assert r.status_code == 200
    assert r.json()["profile"]["name"] == "Ada"

    assert client.get("/profiles/me", headers=headers(2)).status_code == 404


def test_invalid_profile_type(client, headers):
    r = _create_profile(client, headers, 1, "recruiter")
    assert r.status_code == 400


def test_only_companies_post_jobs(client, headers):
    _create_profile(client, headers, 1, "candidate", name="Ada")
    _create_profile(client, headers, 2, "company", name="Acme")

    assert _create_job(client, headers, 1).status_code == 403

    r = _create_job(client, headers, 2, requirements=["python"], remote=True, salary_min=100, salary_max=200)
    assert r.status_code == 201, r.text
    job = r.json()["job"]
    assert job["status"] == "active"
    assert job["currency"] == "USD"
    assert job["requirements"] == ["python"]
    assert job["company"]["name"] == "Acme"


def test_job_validation(client, headers):
    _create_profile(client, headers, 2, "company", name="Acme")

    assert _create_job(client, headers, 2, salary_min=500, salary_max=100).status_code == 400
    assert _create_job(client, headers, 2, status="archived").status_code == 400
    assert _create_job(client, headers, 2, description="short").status_code == 422


def test_job_post_rate_limit(client, headers, app):
    from backend.agentboard.services.rate_limiter import DatabaseRateLimiter, get_job_post_rate_limiter

    app.dependency_overrides[get_job_post_rate_limiter] = lambda: DatabaseRateLimiter(
        limit=2, window_s=3600, prefix="ratelimit:jobs"
    )
    _create_profile(client, headers, 2, "company", name="Acme")

    assert _create_job(client, headers, 2, title="One").status_code == 201
    assert _create_job(client, headers, 2, title="Two").status_code == 201
    r = _create_job(client, headers, 2, title="Three")
    assert r.status_code == 429
    assert r.json()["code"] == "rate_limit_exceeded"
    assert r.json()["details"]["remaining"] == 0


def test_owner_only_job_management(client, headers):
    _create_profile(client, headers, 2, "company", name="Acme")
    _create_profile(client, headers, 3, "company", name="Other")
    job = _create_job(client, headers, 2).json()["job"]

    assert client.patch(f"/jobs/{job['id']}", headers=headers(3), json={"status": "paused"}).status_code == 403

    r = client.patch(f"/jobs/{job['id']}", headers=headers(2), json={"status": "paused", "title": "Senior Backend"})
    assert r.status_code == 200
    assert r.json()["job"]["status"] == "paused"
    assert r.json()["job"]["title"] == "Senior Backend"

    # Non-active jobs are only visible to their owner.
    assert client.get(f"/jobs/{job['id']}", headers=headers(3)).status_code == 404
    assert client.get(f"/jobs/{job['id']}", headers=headers(2)).status_code == 200


def test_candidate_listing_is_scored_and_filtered(client, headers, fake_provider):
    _create_profile(client, headers, 1, "candidate", name="Ada", headline="python developer", skills=["python"])
    _create_profile(client, headers, 2, "company", name="Acme")
    py = _create_job(client, headers, 2, title="Python Dev", description="python python services", remote=True).json()["job"]
    design = _create_job(client, headers, 2, title="Designer", description="design systems work", location="Berlin").json()["job"]
    _create_job(client, headers, 2, title="Draft Role", description="not yet published", status="draft")

    r = client.get("/jobs", headers=headers(1), params={"sort": "match"})
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["scored"] is True
    assert [j["id"] for j in data["jobs"]] == [py["id"], design["id"]]
    assert data["jobs"][0]["match_score"] > data["jobs"][1]["match_score"]

    remote_only = client.get("/jobs", headers=headers(1), params={"remote": True}).json()["jobs"]
    assert [j["id"] for j in remote_only] == [py["id"]]

    in_berlin = client.get("/jobs", headers=headers(1), params={"location": "berlin"}).json()["jobs"]
    assert [j["id"] for j in in_berlin] == [design["id"]]

    # Candidates cannot list drafts even if they ask.
    drafts = client.get("/jobs", headers=headers(1), params={"status": "draft"}).json()["jobs"]
    assert all(j["status"] == "active" for j in drafts)


def test_listing_degrades_when_provider_is_down(client, headers, fake_provider):
    _create_profile(client, headers, 1, "candidate", name="Ada", skills=["python"])
    _create_profile(client, headers, 2, "company", name="Acme")
    _create_job(client, headers, 2, title="Python Dev")
    fake_provider.fail = True

    r = client.get("/matches/jobs", headers=headers(1))
    assert r.status_code == 200
    data = r.json()
    assert data["scored"] is False
    assert len(data["matches"]) == 1
    assert data["matches"][0]["match_score"] is None


def test_candidate_match_feed(client, headers):
    _create_profile(client, headers, 1, "candidate", name="Ada", headline="sales lead", skills=["sales"])
    _create_profile(client, headers, 2, "company", name="Acme")
    sales = _create_job(client, headers, 2, title="Account Exec", description="sales sales sales").json()["job"]
    _create_job(client, headers, 2, title="Data Eng", description="data pipelines in python")

    r = client.get("/matches/jobs", headers=headers(1), params={"limit": 1})
    assert r.status_code == 200
    matches = r.json()["matches"]
    assert len(matches) == 1
    assert matches[0]["job"]["id"] == sales["id"]

    assert client.get("/matches/jobs", headers=headers(2)).status_code == 403
    assert client.get("/matches/jobs", headers=headers(1), params={"limit": 0}).status_code == 422


def test_company_sees_ranked_candidates(client, headers):
    _create_profile(client, headers, 1, "candidate", name="Dee", headline="design lead", skills=["design"])
    _create_profile(client, headers, 3, "candidate", name="Sam", headline="sales lead", skills=["sales"])
    _create_profile(client, headers, 2, "company", name="Acme")
    job = _create_job(client, headers, 2, title="Product Designer", description="design design design").json()["job"]

    r = client.get(f"/jobs/{job['id']}/matches", headers=headers(2))
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["scored"] is True
    assert [m["candidate_id"] for m in data["matches"]] == [1, 3]
    assert data["matches"][0]["skills"] == ["design"]

    assert client.get(f"/jobs/{job['id']}/matches", headers=headers(1)).status_code == 403


def test_delete_job_removes_embeddings_and_applications(client, headers, db_session):
    from backend.agentboard.models.application import Application
    from backend.agentboard.models.embedding import Embedding

    _create_profile(client, headers, 1, "candidate", name="Ada", skills=["python"])
    _create_profile(client, headers, 2, "company", name="Acme")
    job = _create_job(client, headers, 2, title="Python Dev").json()["job"]

    assert client.get("/matches/jobs", headers=headers(1)).json()["scored"] is True
    assert client.post(f"/jobs/{job['id']}/apply", headers=headers(1), json={}).status_code == 201
    assert db_session.query(Embedding).filter_by(entity_type="job", entity_id=job["id"]).count() == 1

    r = client.delete(f"/jobs/{job['id']}", headers=headers(2))
    assert r.status_code == 200

    db_session.expire_all()
    assert db_session.query(Embedding).filter_by(entity_type="job", entity_id=job["id"]).count() == 0
    assert db_session.query(Application).count() == 0
    assert client.get(f"/jobs/{job['id']}", headers=headers(2)).status_code == 404


def test_delete_profile_cascades(client, headers, db_session):
    from backend.agentboard.models.embedding import Embedding
    from backend.agentboard.models.job import JobPosting

    _create_profile(client, headers, 1, "candidate", name="Ada", skills=["python"])
    _create_profile(client, headers, 2, "company", name="Acme")
    _create_job(client, headers, 2, title="Python Dev")
    client.get("/matches/jobs", headers=headers(1))
    assert db_session.query(Embedding).count() == 2

    assert client.delete("/profiles/me", headers=headers(2)).status_code == 200

    db_session.expire_all()
    assert db_session.query(JobPosting).count() == 0
    remaining = db_session.query(Embedding).all()
    assert [(e.entity_type, e.entity_id) for e in remaining] == [("profile", 1)]


def test_requirements_stored_as_json(client, headers, db_session):
    from backend.agentboard.models.job import JobPosting

    _create_profile(client, headers, 2, "company", name="Acme")
    job = _create_job(client, headers, 2, requirements=["SQL", "SQL", "Python"]).json()["job"]

    row = db_session.query(JobPosting).filter(JobPosting.id == job["id"]).one()
    assert json.loads(row.requirements) == ["SQL", "Python"]


def test_candidate_listing_scores_every_listed_job(client, headers, monkeypatch):
    from backend.agentboard.services import ranking

    # A tiny match-feed cap must not leave listed jobs unscored.
    monkeypatch.setattr(ranking, "MATCH_MAX_LIMIT", 1)
    _create_profile(client, headers, 1, "candidate", name="Ada", headline="data analyst", skills=["data"])
    _create_profile(client, headers, 2, "company", name="Acme")
    for title in ("Data Analyst", "Sales Rep", "Designer"):
        _create_job(client, headers, 2, title=title, description=f"{title} role at Acme")

    r = client.get("/jobs", headers=headers(1), params={"sort": "match"})
    assert r.status_code == 200, r.text
    jobs = r.json()["jobs"]
    assert len(jobs) == 3
    assert all(isinstance(j["match_score"], int) for j in jobs)
    assert jobs[0]["title"] == "Data Analyst"
