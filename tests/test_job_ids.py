import re

import pytest

from app.core.exceptions import ValidationError
from app.services.job_ids import allocate_job_id, is_valid_job_id, resolve_job_id


def test_allocated_id_format():
    job_id = allocate_job_id("pwd-bulk")
    assert re.fullmatch(r"pwd-bulk-\d{13,}-[0-9a-f]{12}", job_id)
    assert is_valid_job_id(job_id)


def test_allocated_ids_are_unique():
    ids = {allocate_job_id("qr-bulk") for _ in range(1000)}
    assert len(ids) == 1000


def test_supplied_id_is_kept_when_safe():
    assert resolve_job_id("qr-bulk", "client_job-42") == "client_job-42"


@pytest.mark.parametrize("supplied", [None, ""])
def test_missing_id_is_allocated(supplied):
    assert resolve_job_id("doc-fetch", supplied).startswith("doc-fetch-")


@pytest.mark.parametrize("supplied", ["../etc", "a/b", "has space", "x" * 129, "dots.zip"])
def test_unsafe_ids_are_rejected(supplied):
    with pytest.raises(ValidationError):
        resolve_job_id("img-resize", supplied)
