from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

from status_dashboard.collector import CollectorRunner
from status_dashboard.refresh import REFRESH_JOB_ID, RefreshCoordinator, RefreshOutcome
from status_dashboard.snapshot_store import PLACEHOLDER_CONTENT, SnapshotStore

from tests.fakes import GatedRunner, RaisingRunner


def _coordinator(runner, artifact: Path, store: SnapshotStore | None = None) -> RefreshCoordinator:
    return RefreshCoordinator(store or SnapshotStore(), runner, artifact, interval_seconds=900)


@pytest.mark.asyncio
async def test_successful_refresh_publishes_artifact(artifact_path: Path) -> None:
    runner = GatedRunner(artifact_path, content="<html>A</html>")
    coord = _coordinator(runner, artifact_path)

    before = datetime.now(timezone.utc)
    assert coord.trigger_refresh() is True
    assert coord.in_progress is True
    await coord.wait_idle()

    snap = coord.store.read()
    assert snap.content == "<html>A</html>"
    after = datetime.now(timezone.utc)
    assert snap.produced_at is not None
    assert before <= snap.produced_at <= after
    state = coord.refresh_state()
    assert state.in_progress is False
    assert state.last_attempt_result is RefreshOutcome.SUCCESS
    assert state.last_error is None
    assert state.successes == 1


@pytest.mark.asyncio
async def test_produced_at_is_completion_time_not_trigger_time(artifact_path: Path) -> None:
    runner = GatedRunner(artifact_path, hold=True)
    coord = _coordinator(runner, artifact_path)

    coord.trigger_refresh()
    await asyncio.sleep(0.05)
    released_at = datetime.now(timezone.utc)
    runner.release.set()
    await coord.wait_idle()
    finished_at = datetime.now(timezone.utc)

    produced_at = coord.store.read().produced_at
    assert produced_at is not None
    assert released_at <= produced_at <= finished_at
    assert coord.refresh_state().last_attempt_at < released_at


@pytest.mark.asyncio
async def test_trigger_while_busy_is_skipped(artifact_path: Path) -> None:
    runner = GatedRunner(artifact_path, hold=True)
    coord = _coordinator(runner, artifact_path)

    assert coord.trigger_refresh() is True
    await asyncio.sleep(0)
    assert coord.trigger_refresh() is False
    assert coord.trigger_refresh() is False

    runner.release.set()
    await coord.wait_idle()

    assert runner.calls == 1
    assert runner.max_active == 1
    state = coord.refresh_state()
    assert state.skipped == 2
    assert state.attempts == 1
    assert coord.in_progress is False


@pytest.mark.asyncio
async def test_skipped_trigger_is_not_queued(artifact_path: Path) -> None:
    runner = GatedRunner(artifact_path, hold=True)
    coord = _coordinator(runner, artifact_path)

    coord.trigger_refresh()
    coord.trigger_refresh()
    runner.release.set()
    await coord.wait_idle()
    await asyncio.sleep(0.05)

    assert runner.calls == 1


@pytest.mark.asyncio
async def test_guard_released_allows_next_refresh(artifact_path: Path) -> None:
    runner = GatedRunner(artifact_path)
    coord = _coordinator(runner, artifact_path)

    coord.trigger_refresh()
    await coord.wait_idle()
    assert coord.trigger_refresh() is True
    await coord.wait_idle()

    assert runner.calls == 2
    assert coord.refresh_state().successes == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "runner_kwargs",
    [
        {"exit_code": 1, "stderr": "boom"},
        {"exit_code": None, "error": "FileNotFoundError: node"},
        {"content": None},
        {"content": "   \n\t"},
    ],
    ids=["non-zero-exit", "spawn-error", "missing-artifact", "blank-artifact"],
)
async def test_failed_refresh_keeps_last_known_good(artifact_path: Path, runner_kwargs: dict) -> None:
    store = SnapshotStore()
    good = store.publish("<html>good</html>")
    artifact_path.unlink(missing_ok=True)

    runner = GatedRunner(artifact_path, **runner_kwargs)
    coord = _coordinator(runner, artifact_path, store)
    coord.trigger_refresh()
    await coord.wait_idle()

    assert store.read() is good
    state = coord.refresh_state()
    assert state.in_progress is False
    assert state.last_attempt_result is RefreshOutcome.FAILURE
    assert state.last_error
    assert state.failures == 1


@pytest.mark.asyncio
async def test_unreadable_artifact_still_releases_guard(artifact_path: Path) -> None:
    runner = GatedRunner(artifact_path, content=None)
    artifact_path.write_bytes(b"\xff\xfe\xfa not utf-8")
    coord = _coordinator(runner, artifact_path)

    coord.trigger_refresh()
    await coord.wait_idle()

    assert coord.in_progress is False
    assert coord.refresh_state().last_attempt_result is RefreshOutcome.FAILURE
    assert coord.store.read().content == PLACEHOLDER_CONTENT


@pytest.mark.asyncio
async def test_artifact_directory_instead_of_file_is_a_failure(tmp_path: Path) -> None:
    artifact = tmp_path / "status.html"
    artifact.mkdir()
    runner = GatedRunner(tmp_path / "elsewhere.html")
    coord = _coordinator(runner, artifact)

    coord.trigger_refresh()
    await coord.wait_idle()

    assert coord.in_progress is False
    assert coord.refresh_state().last_attempt_result is RefreshOutcome.FAILURE


@pytest.mark.asyncio
async def test_runner_exception_is_recorded_as_failure(artifact_path: Path) -> None:
    coord = _coordinator(RaisingRunner(), artifact_path)

    coord.trigger_refresh()
    await coord.wait_idle()

    state = coord.refresh_state()
    assert state.in_progress is False
    assert state.last_attempt_result is RefreshOutcome.FAILURE
    assert "runner exploded" in (state.last_error or "")


@pytest.mark.asyncio
async def test_publish_error_still_releases_guard(artifact_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    runner = GatedRunner(artifact_path)
    coord = _coordinator(runner, artifact_path)

    def _boom(content: str):
        raise RuntimeError("store unavailable")

    monkeypatch.setattr(coord.store, "publish", _boom)
    coord.trigger_refresh()
    await coord.wait_idle()

    assert coord.in_progress is False
    assert coord.refresh_state().last_attempt_result is RefreshOutcome.FAILURE


@pytest.mark.asyncio
async def test_success_then_failure_serves_first_content(artifact_path: Path) -> None:
    runner = GatedRunner(artifact_path, content="<html>A</html>")
    coord = _coordinator(runner, artifact_path)
    coord.trigger_refresh()
    await coord.wait_idle()
    first = coord.store.read()

    runner.exit_code = 2
    runner.content = "<html>partial</html>"
    coord.trigger_refresh()
    await coord.wait_idle()

    assert coord.store.read() is first
    assert coord.store.read().content == "<html>A</html>"


@pytest.mark.asyncio
async def test_trigger_outside_event_loop_releases_guard(artifact_path: Path) -> None:
    coord = _coordinator(GatedRunner(artifact_path), artifact_path)
    loop = asyncio.get_running_loop()

    def _from_thread() -> None:
        with pytest.raises(RuntimeError):
            coord.trigger_refresh()

    await loop.run_in_executor(None, _from_thread)
    assert coord.in_progress is False


@pytest.mark.asyncio
async def test_schedule_periodic_refreshes_immediately(artifact_path: Path) -> None:
    runner = GatedRunner(artifact_path)
    coord = _coordinator(runner, artifact_path)

    coord.schedule_periodic(3600)
    try:
        assert coord.scheduler.get_job(REFRESH_JOB_ID) is not None
        await coord.wait_idle()
        assert runner.calls == 1
        assert coord.store.read().content == "<html>A</html>"
    finally:
        await coord.stop()
    assert coord.scheduler.running is False


@pytest.mark.asyncio
async def test_periodic_fires_are_absorbed_while_refresh_hangs(artifact_path: Path) -> None:
    runner = GatedRunner(artifact_path, hold=True)
    coord = _coordinator(runner, artifact_path)

    coord.schedule_periodic(0.05)
    try:
        await asyncio.sleep(0.5)
        assert runner.calls == 1
        assert coord.refresh_state().skipped >= 1
    finally:
        await coord.stop()

    assert coord.scheduler.running is False
    assert coord.in_progress is False
    assert coord.store.read().content == PLACEHOLDER_CONTENT


@pytest.mark.asyncio
async def test_schedule_rejects_non_positive_interval(artifact_path: Path) -> None:
    coord = _coordinator(GatedRunner(artifact_path), artifact_path)
    with pytest.raises(ValueError):
        coord.schedule_periodic(0)


@pytest.mark.asyncio
async def test_real_collector_process_end_to_end(tmp_path: Path) -> None:
    runner = CollectorRunner(
        [sys.executable, "-c", "open('status.html', 'w').write('<html>from child</html>')"],
        cwd=str(tmp_path),
    )
    coord = _coordinator(runner, tmp_path / "status.html")

    coord.trigger_refresh()
    await coord.wait_idle()

    assert coord.store.read().content == "<html>from child</html>"
    assert coord.refresh_state().last_attempt_result is RefreshOutcome.SUCCESS


@pytest.mark.asyncio
async def test_stop_kills_in_flight_collector(tmp_path: Path) -> None:
    runner = CollectorRunner([sys.executable, "-c", "import time; time.sleep(30)"], cwd=str(tmp_path))
    coord = _coordinator(runner, tmp_path / "status.html")

    coord.trigger_refresh()
    await asyncio.sleep(0.2)
    await asyncio.wait_for(coord.stop(), timeout=5)

    assert coord.in_progress is False
    assert coord.refresh_state().last_error == "refresh cancelled"
