"""
Tests for DirectoryWatcher: listing diffs, rename disambiguation and recovery.

These tests focus on:
1. Construction validation
2. Polling: silent baseline, then added/removed diffs
3. Native notifications: change and rename (appeared vs vanished)
4. Automatic restart after failures, and stop() cancelling it
"""

import asyncio

import pytest

from fylo import primitives
from fylo.errors import NotFoundError, PermissionDeniedError, ValidationError, classify
from fylo.primitives import PathStat
from fylo.watcher import DirectoryWatcher, NativeEvent, WatchMode


def polling(interval=20, restart_delay=0.05):
    return {"usePolling": True, "pollingInterval": interval, "restartDelay": restart_delay}


async def wait_until(predicate, timeout=3.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.02)


# ============================================================================
# INITIALIZATION TESTS
# ============================================================================


def test_init_with_valid_directory(watch_dir):
    """Test: DirectoryWatcher initializes with no baseline and default restart delay."""
    watcher = DirectoryWatcher(watch_dir)

    assert watcher.watch_path == str(watch_dir)
    assert watcher.mode is WatchMode.EVENT_BASED
    assert watcher.options.restart_delay == 1.0
    assert watcher.previous_entries is None
    assert not watcher.is_running()


def test_init_rejects_file(watched_file):
    """Test: Watching a file with DirectoryWatcher is rejected."""
    with pytest.raises(ValidationError, match="not a directory"):
        DirectoryWatcher(watched_file)


def test_init_missing_directory(tmp_path):
    """Test: A missing directory raises NotFoundError."""
    with pytest.raises(NotFoundError):
        DirectoryWatcher(tmp_path / "missing")


def test_init_rejects_relative_path():
    """Test: Relative paths are a ValidationError."""
    with pytest.raises(ValidationError, match="absolute"):
        DirectoryWatcher("some/dir")


# ============================================================================
# POLLING TESTS
# ============================================================================


@pytest.mark.asyncio
async def test_polling_baseline_is_silent(watch_dir, recorder):
    """Test: Entries present at start are the baseline, not "added"."""
    (watch_dir / "a.txt").write_text("a")
    watcher = DirectoryWatcher(watch_dir, polling())
    recorder.attach(watcher, "added", "removed")

    watcher.start()
    await wait_until(lambda: watcher.previous_entries is not None)
    await asyncio.sleep(0.05)
    watcher.stop()

    assert recorder.events == []
    assert watcher.previous_entries == {str(watch_dir / "a.txt")}


@pytest.mark.asyncio
async def test_polling_reports_added_and_removed(watch_dir, recorder):
    """Test: {a, b} -> {b, c} emits added(c) and removed(a) with full paths."""
    (watch_dir / "a").write_text("a")
    (watch_dir / "b").write_text("b")
    watcher = DirectoryWatcher(watch_dir, polling())
    recorder.attach(watcher, "added", "removed")
    watcher.start()
    await wait_until(lambda: watcher.previous_entries is not None)

    (watch_dir / "c").write_text("c")
    (watch_dir / "a").unlink()

    await recorder.wait_for("added")
    await recorder.wait_for("removed")
    watcher.stop()

    assert recorder.of("added") == [(str(watch_dir / "c"),)]
    assert recorder.of("removed") == [(str(watch_dir / "a"),)]
    assert watcher.previous_entries == {str(watch_dir / "b"), str(watch_dir / "c")}


@pytest.mark.asyncio
async def test_polling_emits_added_in_sorted_order(watch_dir, recorder):
    """Test: Several new entries in one poll are reported in sorted order."""
    watcher = DirectoryWatcher(watch_dir, polling(interval=200))
    recorder.attach(watcher, "added")
    watcher.start()
    await wait_until(lambda: watcher.previous_entries is not None)

    for name in ("z", "m", "a"):
        (watch_dir / name).write_text(name)

    added = await recorder.wait_for("added", count=3)
    watcher.stop()

    assert added == [(str(watch_dir / name),) for name in ("a", "m", "z")]


# ============================================================================
# NATIVE EVENT TESTS
# ============================================================================


@pytest.fixture
def fake_stat(monkeypatch):
    """Replace stat_path in the watcher module with a scripted version."""
    outcomes = {}

    async def stat_path(path):
        outcome = outcomes.get(path)
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome is None:
            raise NotFoundError(f"No such file or directory at path: {path}.", path=path)
        return outcome

    monkeypatch.setattr("fylo.watcher.directory_watcher.stat_path", stat_path)
    return outcomes


def file_stat():
    return PathStat(is_file=True, is_directory=False, modified_time=0.0, size=1)


@pytest.mark.asyncio
async def test_change_notification_emits_changed(watch_dir, recorder):
    """Test: A CHANGE notification emits changed(full path)."""
    watcher = DirectoryWatcher(watch_dir)
    recorder.attach(watcher, "changed")
    watcher.start()

    watcher._on_native_event(NativeEvent.CHANGE, "notes.txt")
    watcher._on_native_event(NativeEvent.CHANGE, None)
    watcher.stop()

    assert recorder.of("changed") == [(str(watch_dir / "notes.txt"),)]


@pytest.mark.asyncio
async def test_rename_of_new_entry_emits_added_once(watch_dir, recorder, fake_stat):
    """Test: A rename for an entry that now exists and is untracked emits "added" once."""
    full = str(watch_dir / "new.txt")
    fake_stat[full] = file_stat()
    watcher = DirectoryWatcher(watch_dir)
    recorder.attach(watcher, "added", "removed")
    watcher.start()

    watcher._on_native_event(NativeEvent.RENAME, "new.txt")
    await wait_until(lambda: recorder.of("added"))
    watcher._on_native_event(NativeEvent.RENAME, "new.txt")
    await asyncio.sleep(0.05)
    watcher.stop()

    assert recorder.of("added") == [(full,)]
    assert recorder.of("removed") == []
    assert full in watcher.previous_entries


@pytest.mark.asyncio
async def test_rename_of_vanished_entry_emits_removed(watch_dir, recorder, fake_stat):
    """Test: A rename for an entry that no longer exists emits "removed"."""
    existing = watch_dir / "old.txt"
    existing.write_text("old")
    watcher = DirectoryWatcher(watch_dir)
    recorder.attach(watcher, "added", "removed")
    watcher.start()
    assert str(existing) in watcher.previous_entries

    watcher._on_native_event(NativeEvent.RENAME, "old.txt")
    await recorder.wait_for("removed")
    watcher.stop()

    assert recorder.of("removed") == [(str(existing),)]
    assert str(existing) not in watcher.previous_entries


@pytest.mark.asyncio
async def test_rename_stat_failure_emits_error(watch_dir, recorder, fake_stat):
    """Test: A stat failure other than not-found is reported and the watcher keeps running."""
    full = str(watch_dir / "locked")
    fake_stat[full] = PermissionDeniedError(f"Permission denied at path: {full}.", path=full)
    watcher = DirectoryWatcher(watch_dir)
    recorder.attach(watcher, "error", "added", "removed")
    watcher.start()

    watcher._on_native_event(NativeEvent.RENAME, "locked")
    errors = await recorder.wait_for("error")

    assert watcher.is_running()
    watcher.stop()
    assert isinstance(errors[0][0], PermissionDeniedError)
    assert recorder.of("added") == recorder.of("removed") == []


@pytest.mark.asyncio
async def test_stop_cancels_pending_rename_checks(watch_dir, recorder, monkeypatch):
    """Test: Rename checks still in flight at stop() emit nothing."""
    started = asyncio.Event()

    async def slow_stat(path):
        started.set()
        await asyncio.sleep(1)
        return file_stat()

    monkeypatch.setattr("fylo.watcher.directory_watcher.stat_path", slow_stat)
    watcher = DirectoryWatcher(watch_dir)
    recorder.attach(watcher, "added")
    watcher.start()

    watcher._on_native_event(NativeEvent.RENAME, "slow.txt")
    await started.wait()
    watcher.stop()
    await asyncio.sleep(0.05)

    assert recorder.of("added") == []


@pytest.mark.asyncio
async def test_event_mode_detects_create_and_delete(watch_dir, recorder):
    """Test: Real OS notifications produce added and removed events."""
    watcher = DirectoryWatcher(watch_dir)
    recorder.attach(watcher, "added", "removed")
    watcher.start()
    await asyncio.sleep(0.1)
    target = watch_dir / "created.txt"

    try:
        target.write_text("hello")
        await recorder.wait_for("added")
        target.unlink()
        await recorder.wait_for("removed")
    finally:
        watcher.stop()

    assert (str(target),) in recorder.of("added")
    assert (str(target),) in recorder.of("removed")


# ============================================================================
# RECOVERY TESTS
# ============================================================================


@pytest.fixture
def flaky_listing(monkeypatch):
    """Make list_directory fail a configurable number of times."""
    state = {"failures": 1, "calls": 0, "error": None}

    async def list_directory(path):
        state["calls"] += 1
        if state["failures"] is None or state["calls"] <= state["failures"]:
            raise state["error"] or classify(OSError(5, "I/O error"), path)
        return await primitives.list_directory(path)

    monkeypatch.setattr("fylo.watcher.directory_watcher.list_directory", list_directory)
    return state


@pytest.mark.asyncio
async def test_failure_stops_then_restarts(watch_dir, recorder, flaky_listing):
    """Test: A listing failure emits error and stopped, then the watcher restarts."""
    watcher = DirectoryWatcher(watch_dir, polling(restart_delay=0.05))
    recorder.attach(watcher, "error", "stopped")

    watcher.start()
    await recorder.wait_for("error")
    await recorder.wait_for("stopped")
    await wait_until(watcher.is_running)
    await wait_until(lambda: watcher.previous_entries is not None)
    watcher.stop()

    assert len(recorder.of("error")) == 1
    assert recorder.of("error")[0][0].message.startswith("Error watching")


@pytest.mark.asyncio
async def test_unexpected_listing_exception_is_recovered(watch_dir, recorder, flaky_listing):
    """Test: An unclassified exception from a poll goes through the same recovery."""
    flaky_listing["error"] = RuntimeError("listing exploded")
    watcher = DirectoryWatcher(watch_dir, polling(restart_delay=0.05))
    recorder.attach(watcher, "error", "stopped")

    watcher.start()
    errors = await recorder.wait_for("error")
    await recorder.wait_for("stopped")
    await wait_until(watcher.is_running)
    watcher.stop()

    assert errors[0][0].message.startswith("Error watching")
    assert isinstance(errors[0][0].__cause__, RuntimeError)


@pytest.mark.asyncio
async def test_restarts_are_unbounded(watch_dir, recorder, flaky_listing):
    """Test: A persistent failure keeps restarting the watcher."""
    flaky_listing["failures"] = None
    watcher = DirectoryWatcher(watch_dir, polling(restart_delay=0.01))
    recorder.attach(watcher, "error")

    watcher.start()
    await recorder.wait_for("error", count=3)
    watcher.stop()

    assert flaky_listing["calls"] >= 3


@pytest.mark.asyncio
async def test_stop_cancels_scheduled_restart(watch_dir, recorder, flaky_listing):
    """Test: stop() during the restart delay cancels the restart."""
    flaky_listing["failures"] = None
    watcher = DirectoryWatcher(watch_dir, polling(restart_delay=0.2))
    recorder.attach(watcher, "error")

    watcher.start()
    await recorder.wait_for("error")
    watcher.stop()
    await asyncio.sleep(0.3)

    assert not watcher.is_running()
    assert len(recorder.of("error")) == 1
    assert flaky_listing["calls"] == 1


@pytest.mark.asyncio
async def test_native_start_failure_schedules_restart(watch_dir, recorder, monkeypatch):
    """Test: Failing to start the native watch is recovered like any other failure."""

    class FailingHandle:
        def __init__(self, watched_dir, *args, **kwargs):
            self.watched_dir = watched_dir

        def start(self):
            raise PermissionDeniedError(f"Permission denied at path: {self.watched_dir}.", path=self.watched_dir)

        def close(self):
            pass

    monkeypatch.setattr("fylo.watcher.directory_watcher.NativeWatchHandle", FailingHandle)
    watcher = DirectoryWatcher(watch_dir, {"restartDelay": 0.01})
    recorder.attach(watcher, "error")

    watcher.start()
    await recorder.wait_for("error", count=2)
    watcher.stop()

    assert not watcher.is_running()
    assert isinstance(recorder.of("error")[0][0], PermissionDeniedError)
