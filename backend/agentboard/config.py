import os
from pathlib import Path
from dotenv import load_dotenv

# Override=True so changes in backend/.env take effect on process reload (and not get
# stuck on old environment variables).
#
# For automated tests (SQLite), we need to prevent backend/.env from overriding the
# test DATABASE_URL. Set DISABLE_DOTENV=1 to skip loading .env.
if os.getenv("DISABLE_DOTENV") != "1":
    load_dotenv(override=True)


def _env_flag(name: str, default: str) -> bool:
    return (os.getenv(name, default) or default).strip() in {"1", "true", "True", "yes", "YES"}


_raw_database_url = (os.getenv("DATABASE_URL") or "").strip()
# Default to a local SQLite DB for dev so the backend can start out-of-the-box.
# Use an absolute path so it works regardless of current working directory.
_default_sqlite_path = (Path(__file__).resolve().parent.parent / "dev.db").as_posix()
DATABASE_URL = _raw_database_url or f"sqlite:///{_default_sqlite_path}"

LOG_LEVEL = (os.getenv("LOG_LEVEL", "INFO") or "INFO").strip().upper()

# Auth / JWT
# Tokens are issued by the external identity provider; we only verify them.
# NOTE: keep a default for local dev so the server can boot even if SECRET_KEY isn't set.
SECRET_KEY = os.getenv("SECRET_KEY", "dev_secret_change_me")

# -------------------- Embeddings --------------------
# local  -> fastembed model running in-process
# openai -> OpenAI-compatible /v1/embeddings endpoint
EMBEDDINGS_ENABLED = _env_flag("EMBEDDINGS_ENABLED", "1")
EMBEDDINGS_PROVIDER = (os.getenv("EMBEDDINGS_PROVIDER", "local") or "local").strip().lower()
EMBEDDINGS_MODEL = os.getenv("EMBEDDINGS_MODEL", "BAAI/bge-small-en-v1.5")
# 0 disables the dimension check.
EMBEDDINGS_DIM = int(os.getenv("EMBEDDINGS_DIM", "0") or "0")
EMBEDDINGS_TIMEOUT_S = float(os.getenv("EMBEDDINGS_TIMEOUT_S", "10") or "10")
# Transient provider failures are retried at most once.
EMBEDDINGS_MAX_RETRIES = min(int(os.getenv("EMBEDDINGS_MAX_RETRIES", "1") or "1"), 1)

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")

# -------------------- Matching --------------------
MATCH_CACHE_TTL_S = int(os.getenv("MATCH_CACHE_TTL_S", "60") or "60")
MATCH_POOL_MAX = int(os.getenv("MATCH_POOL_MAX", "500") or "500")
MATCH_DEFAULT_LIMIT = 10
MATCH_MAX_LIMIT = 100

# -------------------- Rate limiting --------------------
# database -> sliding window stored next to the application tables
# redis    -> sorted-set sliding window (shared across processes/hosts)
RATE_LIMIT_BACKEND = (os.getenv("RATE_LIMIT_BACKEND", "database") or "database").strip().lower()
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

APPLICATION_RATE_LIMIT = int(os.getenv("APPLICATION_RATE_LIMIT", "50") or "50")
APPLICATION_RATE_WINDOW_S = int(os.getenv("APPLICATION_RATE_WINDOW_S", str(24 * 60 * 60)) or "86400")
JOB_POST_RATE_LIMIT = int(os.getenv("JOB_POST_RATE_LIMIT", "10") or "10")
JOB_POST_RATE_WINDOW_S = int(os.getenv("JOB_POST_RATE_WINDOW_S", str(60 * 60)) or "3600")
