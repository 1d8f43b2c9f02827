from __future__ import annotations

import httpx
import pytest
from arq import Retry

from app.core.errors import TransientError, ValidationError
from app.workers.arq_worker import WorkerSettings, _retrying, payment_completed_job


async def _fail(exc: Exception) -> None:
    raise exc


async def _ok() -> str:
    return "done"


@pytest.mark.asyncio
async def test_successful_work_passes_through() -> None:
    assert await _retrying({"job_try": 1}, "work", _ok()) == "done"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "exc",
    [TransientError("gateway error (503)"), httpx.ConnectError("refused")],
)
async def test_transient_failures_are_retried_with_growing_delay(exc: Exception) -> None:
    with pytest.raises(Retry) as first:
        await _retrying({"job_try": 1}, "work", _fail(exc))
    with pytest.raises(Retry) as third:
        await _retrying({"job_try": 3}, "work", _fail(exc))
    assert first.value.defer_score < third.value.defer_score


@pytest.mark.asyncio
async def test_permanent_failures_are_raised(caplog) -> None:
    with pytest.raises(ValidationError):
        await _retrying({"job_try": 1}, "Provisioning order o1", _fail(ValidationError("bad fact")))
    assert "Provisioning order o1 failed permanently" in caplog.text


@pytest.mark.asyncio
async def test_malformed_payload_fails_before_any_work() -> None:
    with pytest.raises(ValidationError):
        await payment_completed_job({"job_try": 1}, {"provider": "stripe"})


def test_worker_registers_jobs_and_crons() -> None:
    names = {f.__name__ for f in WorkerSettings.functions}
    assert {"payment_completed_job", "session_completed_job", "final_grace_warning_job"} <= names
    assert len(WorkerSettings.cron_jobs) == 2
