import os
import sys
import threading
import time
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


# Ensure `import backend.agentboard...` works regardless of where pytest is run from.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Configuration is read at import time, so these must be set before anything imports
# backend.agentboard. Tests never reach a real embedding model or Redis.
os.environ["DISABLE_DOTENV"] = "1"
os.environ["EMBEDDINGS_ENABLED"] = "0"
os.environ["RATE_LIMIT_BACKEND"] = "database"
os.environ["OPENAI_API_KEY"] = ""
os.environ["MATCH_CACHE_TTL_S"] = "60"

from backend.agentboard.services.embedding_provider import EmbeddingProvider  # noqa: E402
from backend.agentboard.utils.error_handlers import ProviderError  # noqa: E402


VOCAB = ("python", "react", "design", "sales", "data")


class FakeEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic keyword-count vectors, one dimension per vocabulary word plus a
    small constant so no text maps to the zero vector. Records every call.
    """

    def __init__(self, model: str = "fake-embed-v1"):
        super().__init__(model=model, dim=len(VOCAB) + 1)
        self.calls: list[str] = []
        self.fail = False
        self.fail_on: set[str] = set()
        self.delay_s = 0.0
        self._lock = threading.Lock()

    def _embed(self, text: str) -> list[float]:
        with self._lock:
            self.calls.append(text)
        if self.delay_s:
            time.sleep(self.delay_s)
        lowered = text.lower()
        if self.fail or any(s in lowered for s in self.fail_on):
            raise ProviderError("fake provider outage")
        vec = [float(lowered.count(w)) for w in VOCAB]
        vec.append(0.1)
        return vec


@pytest.fixture(scope="session")
def test_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    return tmp_path_factory.mktemp("db") / "test.sqlite3"


@pytest.fixture()
def fake_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture()
def app(test_db_path: Path, fake_provider: FakeEmbeddingProvider) -> FastAPI:
    """
    Create a FastAPI app wired to a temporary SQLite DB.

    We intentionally do NOT use `main.app` so startup hooks never touch the dev database.
    """
    from backend.agentboard import database as db

    engine = create_engine(
        f"sqlite+pysqlite:///{test_db_path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    # Patch the shared database module so router dependencies use the test DB.
    db.engine = engine
    db.SessionLocal = TestingSessionLocal

    # Import models so Base metadata is populated, then create tables.
    db.import_models()
    db.Base.metadata.drop_all(bind=engine)
    db.Base.metadata.create_all(bind=engine)

    from backend.agentboard.main import register_error_handlers, register_routes
    from backend.agentboard.services.embedding_provider import get_embedding_provider

    fastapi_app = FastAPI()
    register_routes(fastapi_app)
    register_error_handlers(fastapi_app)
    fastapi_app.dependency_overrides[get_embedding_provider] = lambda: fake_provider

    return fastapi_app


@pytest.fixture()
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


@pytest.fixture()
def db_session(app: FastAPI):
    """
    Direct SQLAlchemy session bound to the same temporary SQLite DB used by the test app.
    """
    from backend.agentboard import database

    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def auth_headers(profile_id: int) -> dict:
    from backend.agentboard.utils.jwt import create_access_token

    token = create_access_token({"sub": str(profile_id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def headers():
    return auth_headers


@pytest.fixture()
def make_profile(db_session):
    from backend.agentboard.models.profile import Profile

    def _make(profile_id: int, profile_type: str = "candidate", **fields):
        profile = Profile(
            id=profile_id,
            profile_type=profile_type,
            name=fields.pop("name", f"Profile {profile_id}"),
            **fields,
        )
        db_session.add(profile)
        db_session.commit()
        db_session.refresh(profile)
        return profile

    return _make


@pytest.fixture()
def make_job(db_session):
    from backend.agentboard.models.job import JobPosting

    def _make(company_id: int, title: str = "Backend Engineer", **fields):
        fields.setdefault("description", "Build and run backend services")
        fields.setdefault("status", "active")
        created_at = fields.pop("created_at", None)
        job = JobPosting(company_profile_id=company_id, title=title, **fields)
        if created_at is not None:
            job.created_at = created_at
        db_session.add(job)
        db_session.commit()
        db_session.refresh(job)
        return job

    return _make
