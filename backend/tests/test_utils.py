"""Tests for retry and exclusion helpers."""

import pytest

from vault_sync.core.config import Settings
from vault_sync.tracker.exclusions import ExclusionRules
from vault_sync.utils.retry import RetryExhausted, RetryPolicy, retry_async


def test_retry_policy_schedules() -> None:
    exponential = RetryPolicy(base_delay=0.5)
    assert [exponential.delay_for(n) for n in range(4)] == [0.5, 1.0, 2.0, 4.0]
    linear = RetryPolicy(base_delay=0.2, backoff="linear")
    assert [linear.delay_for(n) for n in range(3)] == pytest.approx([0.2, 0.4, 0.6])
    assert RetryPolicy(base_delay=1.0, max_delay=3.0).delay_for(5) == 3.0


@pytest.mark.asyncio
async def test_retry_async_succeeds_after_failures() -> None:
    attempts = []

    async def flaky() -> str:
        attempts.append(1)
        if len(attempts) < 3:
            raise ValueError("not yet")
        return "done"

    assert await retry_async(flaky, RetryPolicy(max_attempts=3, base_delay=0.0), retry_on=(ValueError,)) == "done"
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_retry_async_rejects_empty_budget() -> None:
    async def never_called() -> None:
        raise AssertionError("operation ran")

    with pytest.raises(ValueError, match="no attempts"):
        await retry_async(never_called, RetryPolicy(max_attempts=0))


@pytest.mark.asyncio
async def test_retry_async_exhausts() -> None:
    async def always_fails() -> None:
        raise ValueError("never")

    with pytest.raises(RetryExhausted) as excinfo:
        await retry_async(always_fails, RetryPolicy(max_attempts=2, base_delay=0.0), retry_on=(ValueError,))
    assert excinfo.value.attempts == 2
    assert isinstance(excinfo.value.last_error, ValueError)


@pytest.mark.asyncio
async def test_retry_async_does_not_retry_other_errors() -> None:
    calls = []

    async def wrong_kind() -> None:
        calls.append(1)
        raise KeyError("x")

    with pytest.raises(KeyError):
        await retry_async(wrong_kind, RetryPolicy(max_attempts=5, base_delay=0.0), retry_on=(ValueError,))
    assert len(calls) == 1


def test_exclusion_rules() -> None:
    rules = ExclusionRules.from_settings(
        Settings(excluded_files=["todo.md"], excluded_file_types=[".PNG"], excluded_folders=["templates/"])
    )
    assert rules.is_excluded("_vaultsync.md")
    assert rules.is_excluded("_vaultsync.md.backup")
    assert rules.is_excluded("templates/daily.md")
    assert rules.is_excluded("notes/todo.md")
    assert rules.is_excluded("img/photo.png")
    assert rules.is_excluded("notes/.hidden.md")
    assert not rules.is_excluded("notes/templates.md")
    assert rules.filter(["a.md", "_b.md", "c.md"]) == ["a.md", "c.md"]


def test_coordination_file_excluded_even_without_prefix_rules() -> None:
    rules = ExclusionRules(coordination_path="sync-state.md")
    assert rules.is_excluded("sync-state.md")
    assert rules.is_excluded("\\sync-state.md")
    assert not rules.is_excluded("other.md")
