import hashlib
import json
import re
from typing import Any, Iterable


_WS_RE = re.compile(r"\s+")

# Fixed field order: name/title, headline, bio/description, then each skill/requirement.
_PROFILE_FIELDS = ("name", "headline", "bio")
_JOB_FIELDS = ("title", "description")


def normalize_text(text: str | None) -> str:
    t = (text or "").strip()
    t = _WS_RE.sub(" ", t)
    return t


def parse_string_list(raw: Any) -> list[str]:
    """Accept a list or the JSON string list stored on the row."""
    if raw is None:
        return []
    if isinstance(raw, str):
        s = raw.strip()
        if not s:
            return []
        try:
            parsed = json.loads(s)
        except ValueError:
            # A bare string is treated as a single item.
            return [s]
        raw = parsed if isinstance(parsed, list) else [parsed]
    if not isinstance(raw, (list, tuple)):
        return []
    return [str(x) for x in raw if x is not None]


def _field(entity: Any, name: str) -> Any:
    if isinstance(entity, dict):
        return entity.get(name)
    return getattr(entity, name, None)


def entity_kind(entity: Any) -> str:
    """'job' for job postings, 'profile' for candidate/company profiles."""
    if isinstance(entity, dict):
        return "job" if "title" in entity else "profile"
    return "job" if hasattr(entity, "title") else "profile"


def _join(parts: Iterable[str | None]) -> str:
    cleaned = [normalize_text(p) for p in parts]
    return " ".join(p for p in cleaned if p)


def normalize(entity: Any) -> str:
    """
    Canonical text for a Profile or JobPosting (ORM row or plain mapping).

    Absent/blank fields are dropped without leaving extra separators, so the same
    non-empty fields always produce byte-identical text.
    """
    if entity_kind(entity) == "job":
        parts = [_field(entity, f) for f in _JOB_FIELDS]
        parts += parse_string_list(_field(entity, "requirements"))
    else:
        parts = [_field(entity, f) for f in _PROFILE_FIELDS]
        parts += parse_string_list(_field(entity, "skills"))
    return _join(parts)


def fingerprint(*, text: str, model: str) -> str:
    blob = f"{model}\n{text}".encode("utf-8", errors="ignore")
    return hashlib.sha256(blob).hexdigest()
