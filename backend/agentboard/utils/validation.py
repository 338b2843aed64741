"""
Validation utilities for input validation and error handling.
"""
from typing import Any
from fastapi import HTTPException

from ..models.job import JOB_STATUSES


PROFILE_TYPES = ("candidate", "company")
MAX_LIST_ITEMS = 50
MAX_LIST_ITEM_LENGTH = 100


def validate_string_field(
    value: Any,
    field_name: str,
    min_length: int = 1,
    max_length: int = 1000,
    required: bool = True,
) -> str | None:
    """Validate a string field with common rules."""
    if value is None:
        if required:
            raise HTTPException(status_code=400, detail=f"{field_name} is required")
        return None

    if not isinstance(value, str):
        raise HTTPException(status_code=400, detail=f"{field_name} must be a string")

    value = value.strip()

    if required and not value:
        raise HTTPException(status_code=400, detail=f"{field_name} cannot be empty")

    if not value:
        return None

    if len(value) < min_length:
        raise HTTPException(
            status_code=400,
            detail=f"{field_name} must be at least {min_length} characters"
        )

    if len(value) > max_length:
        raise HTTPException(
            status_code=400,
            detail=f"{field_name} must not exceed {max_length} characters"
        )

    return value


def validate_string_list(values: Any, field_name: str) -> list[str]:
    """Skills / requirements: trimmed, de-duplicated in order, empties dropped."""
    if values is None:
        return []
    if not isinstance(values, list):
        raise HTTPException(status_code=400, detail=f"{field_name} must be a list of strings")
    if len(values) > MAX_LIST_ITEMS:
        raise HTTPException(status_code=400, detail=f"{field_name} must not exceed {MAX_LIST_ITEMS} items")

    out: list[str] = []
    for v in values:
        if not isinstance(v, str):
            raise HTTPException(status_code=400, detail=f"{field_name} must be a list of strings")
        v = v.strip()
        if not v or v in out:
            continue
        if len(v) > MAX_LIST_ITEM_LENGTH:
            raise HTTPException(
                status_code=400,
                detail=f"{field_name} items must not exceed {MAX_LIST_ITEM_LENGTH} characters"
            )
        out.append(v)
    return out


def validate_profile_type(profile_type: str) -> str:
    """Validate profile type."""
    if not profile_type or not isinstance(profile_type, str):
        raise HTTPException(status_code=400, detail="Profile type is required")

    profile_type = profile_type.strip().lower()
    if profile_type not in PROFILE_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid profile type. Must be one of: {', '.join(PROFILE_TYPES)}"
        )

    return profile_type


def validate_job_status(status: str | None) -> str:
    """Validate job status."""
    if not status:
        return "active"

    status = status.strip().lower()

    if status not in JOB_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid status. Must be one of: {', '.join(JOB_STATUSES)}"
        )

    return status


def validate_salary_range(salary_min: int | None, salary_max: int | None) -> None:
    if salary_min is not None and salary_max is not None and salary_min > salary_max:
        raise HTTPException(status_code=400, detail="salary_min must be less than or equal to salary_max")
