def _setup(client, headers):
    client.post("/profiles", headers=headers(1), json={"profile_type": "candidate", "name": "Ada", "skills": ["python"]})
    client.post("/profiles", headers=headers(2), json={"profile_type": "company", "name": "Acme"})
    job = client.post(
        "/jobs",
        headers=headers(2),
        json={"title": "Python Dev", "description": "Build python services"},
    ).json()["job"]
    return job


def test_apply_returns_201_with_application_id(client, headers):
    job = _setup(client, headers)

    r = client.post(f"/jobs/{job['id']}/apply", headers=headers(1), json={"cover_letter": "Hi there"})
    assert r.status_code == 201, r.text
    data = r.json()
    assert data["success"] is True
    assert isinstance(data["application_id"], int)
    assert data["application"]["status"] == "submitted"
    assert data["application"]["cover_letter"] == "Hi there"


def test_duplicate_apply_is_409(client, headers):
    job = _setup(client, headers)
    first = client.post(f"/jobs/{job['id']}/apply", headers=headers(1), json={}).json()

    r = client.post(f"/jobs/{job['id']}/apply", headers=headers(1), json={})
    assert r.status_code == 409
    assert r.json()["code"] == "already_applied"
    assert r.json()["details"]["application_id"] == first["application_id"]


def test_company_cannot_apply(client, headers):
    job = _setup(client, headers)
    r = client.post(f"/jobs/{job['id']}/apply", headers=headers(2), json={})
    assert r.status_code == 403
    assert r.json()["code"] == "forbidden"


def test_apply_to_missing_job_is_404(client, headers):
    _setup(client, headers)
    r = client.post("/jobs/9999/apply", headers=headers(1), json={})
    assert r.status_code == 404


def test_apply_rate_limited(client, headers, app):
    from backend.agentboard.services.rate_limiter import DatabaseRateLimiter, get_application_rate_limiter

    app.dependency_overrides[get_application_rate_limiter] = lambda: DatabaseRateLimiter(
        limit=1, window_s=86400, prefix="ratelimit:applications"
    )
    job = _setup(client, headers)
    other = client.post(
        "/jobs",
        headers=headers(2),
        json={"title": "Data Dev", "description": "Build data services"},
    ).json()["job"]

    assert client.post(f"/jobs/{job['id']}/apply", headers=headers(1), json={}).status_code == 201
    r = client.post(f"/jobs/{other['id']}/apply", headers=headers(1), json={})
    assert r.status_code == 429
    assert r.json()["code"] == "rate_limit_exceeded"
    assert r.json()["details"]["remaining"] == 0


def test_status_changes_through_api(client, headers):
    job = _setup(client, headers)
    app_id = client.post(f"/jobs/{job['id']}/apply", headers=headers(1), json={}).json()["application_id"]

    r = client.patch(f"/applications/{app_id}", headers=headers(2), json={"status": "interviewing"})
    assert r.status_code == 400
    assert r.json()["code"] == "invalid_transition"

    r = client.patch(f"/applications/{app_id}", headers=headers(1), json={"status": "reviewed"})
    assert r.status_code == 403

    r = client.patch(f"/applications/{app_id}", headers=headers(2), json={"status": "reviewed"})
    assert r.status_code == 200
    assert r.json()["application"]["status"] == "reviewed"

    r = client.patch(f"/applications/{app_id}", headers=headers(1), json={"status": "withdrawn"})
    assert r.status_code == 200
    assert r.json()["application"]["status"] == "withdrawn"

    # Withdrawn applications do not block a new one.
    assert client.post(f"/jobs/{job['id']}/apply", headers=headers(1), json={}).status_code == 201


def test_application_visibility(client, headers):
    job = _setup(client, headers)
    client.post("/profiles", headers=headers(3), json={"profile_type": "candidate", "name": "Eve"})
    app_id = client.post(f"/jobs/{job['id']}/apply", headers=headers(1), json={}).json()["application_id"]

    mine = client.get("/applications", headers=headers(1)).json()["applications"]
    assert [a["id"] for a in mine] == [app_id]
    assert mine[0]["job"]["title"] == "Python Dev"
    assert mine[0]["job"]["company_name"] == "Acme"

    assert client.get(f"/applications/{app_id}", headers=headers(1)).status_code == 200
    assert client.get(f"/applications/{app_id}", headers=headers(2)).status_code == 200
    assert client.get(f"/applications/{app_id}", headers=headers(3)).status_code == 403
    assert client.get("/applications/9999", headers=headers(1)).status_code == 404

    listing = client.get(f"/jobs/{job['id']}/applications", headers=headers(2)).json()
    assert [a["candidate"]["name"] for a in listing["applications"]] == ["Ada"]
    assert client.get(f"/jobs/{job['id']}/applications", headers=headers(1)).status_code == 403


def test_activity_feed(client, headers):
    job = _setup(client, headers)
    app_id = client.post(f"/jobs/{job['id']}/apply", headers=headers(1), json={}).json()["application_id"]
    client.patch(f"/applications/{app_id}", headers=headers(2), json={"status": "reviewed"})

    r = client.get("/activities", headers=headers(1))
    assert r.status_code == 200
    types = [a["activity_type"] for a in r.json()["activities"]]
    assert set(types) == {"application_submitted", "application_status_changed"}

    company_feed = client.get("/activities", headers=headers(2)).json()["activities"]
    assert [a["activity_type"] for a in company_feed] == ["application_received"]
    assert company_feed[0]["data"]["candidate_name"] == "Ada"
