# app/services/job_ids.py

import re
import time
import uuid
from typing import Optional

from app.core.exceptions import ValidationError

# job ids end up in file names: keep them to a filesystem-safe alphabet
JOB_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def allocate_job_id(prefix: str) -> str:
    """
    ``<prefix>-<epoch millis>-<12 hex>``.

    The prefix is for humans reading logs; uniqueness comes from the
    timestamp and 48 random bits.
    """
    return f"{prefix}-{time.time_ns() // 1_000_000}-{uuid.uuid4().hex[:12]}"


def is_valid_job_id(job_id: str) -> bool:
    return bool(job_id) and JOB_ID_PATTERN.match(job_id) is not None


def resolve_job_id(prefix: str, supplied: Optional[str] = None) -> str:
    """Accept a caller supplied id when it is safe, otherwise allocate one."""
    if supplied is None or supplied == "":
        return allocate_job_id(prefix)
    if not is_valid_job_id(supplied):
        raise ValidationError(
            "Invalid job id: use 1-128 letters, digits, '-' or '_'",
            {"job_id": supplied},
        )
    return supplied
