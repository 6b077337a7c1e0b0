"""Unit tests for ExecutionLimiter and Deadline."""

import time

import pytest

from markflow.utils.exceptions import OperationTimeoutError, ResourceLimitError, ValidationError
from markflow.utils.execution import Deadline, ExecutionLimiter


@pytest.mark.unit
def test_global_ceiling():
    limiter = ExecutionLimiter(max_concurrent=2, max_per_caller=2)

    with limiter.slot("a-1", caller="a"), limiter.slot("b-1", caller="b"):
        with pytest.raises(ResourceLimitError, match="concurrent"):
            with limiter.slot("c-1", caller="c"):
                pass
        assert limiter.stats()["active"] == 2

    assert limiter.stats()["active"] == 0


@pytest.mark.unit
def test_per_caller_ceiling():
    limiter = ExecutionLimiter(max_concurrent=5, max_per_caller=1)

    with limiter.slot("a-1", caller="a"):
        with pytest.raises(ResourceLimitError, match="caller"):
            with limiter.slot("a-2", caller="a"):
                pass
        # Other callers are unaffected
        with limiter.slot("b-1", caller="b"):
            assert limiter.stats()["callers"] == {"a": 1, "b": 1}


@pytest.mark.unit
def test_slot_released_when_body_raises():
    limiter = ExecutionLimiter(max_concurrent=1, max_per_caller=1)

    with pytest.raises(RuntimeError):
        with limiter.slot("a-1", caller="a"):
            raise RuntimeError("boom")

    assert limiter.active() == []
    with limiter.slot("a-1", caller="a"):
        pass


@pytest.mark.unit
def test_duplicate_process_id_rejected():
    limiter = ExecutionLimiter()

    with limiter.slot("convert-0001"):
        with pytest.raises(ValidationError, match="already running"):
            with limiter.slot("convert-0001", caller="other"):
                pass


@pytest.mark.unit
def test_timeout_raised_after_slow_body():
    limiter = ExecutionLimiter()

    with pytest.raises(OperationTimeoutError):
        with limiter.slot("slow-1", timeout=0.01):
            time.sleep(0.05)

    assert limiter.active() == []


@pytest.mark.unit
def test_body_error_wins_over_expired_deadline():
    limiter = ExecutionLimiter()

    with pytest.raises(KeyError):
        with limiter.slot("slow-1", timeout=0.01):
            time.sleep(0.05)
            raise KeyError("original")


@pytest.mark.unit
def test_active_snapshot_and_stats():
    limiter = ExecutionLimiter(max_concurrent=3, max_per_caller=2)

    with limiter.slot("convert-1", caller="cli", kind="conversion"):
        with limiter.slot("scrape-1", caller="engine", kind="scrape"):
            active = limiter.active()

    assert [(op.process_id, op.kind) for op in active] == [
        ("convert-1", "conversion"),
        ("scrape-1", "scrape"),
    ]
    assert limiter.stats() == {"active": 0, "max_concurrent": 3, "max_per_caller": 2, "callers": {}}


@pytest.mark.unit
def test_limits_from_config_and_validation():
    limiter = ExecutionLimiter.from_config({"system": {"execution": {"max_concurrent": 7}}})

    assert limiter.max_concurrent == 7
    assert limiter.max_per_caller == 2
    with pytest.raises(ValidationError):
        ExecutionLimiter(max_concurrent=0)


@pytest.mark.unit
def test_deadline():
    unbounded = Deadline()
    assert unbounded.remaining() is None
    assert not unbounded.expired()

    spent = Deadline(timeout=1.0, started=time.monotonic() - 5)
    assert spent.remaining() == 0.0
    assert spent.expired()
