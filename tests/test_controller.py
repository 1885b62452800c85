from __future__ import annotations

import logging
from collections.abc import Generator

import pytest

from helpers import CollectingSpawner, FakeSource, make_job, make_pipeline
from pipeview import exceptions
from pipeview.controller import PipelineController, pick_initial_cursor
from pipeview.panel import (
    Empty,
    Failed,
    Hidden,
    JobCursor,
    Loaded,
    Loading,
    LogFailed,
    LogLoaded,
    LogLoading,
)
from pipeview.types import FailureKind, Job

SHA_A = "a" * 40
SHA_B = "b" * 40
SHA_C = "c" * 40


@pytest.fixture
def spawner() -> Generator[CollectingSpawner]:
    spawner = CollectingSpawner()
    yield spawner
    spawner.close()


@pytest.fixture
def source() -> FakeSource:
    return FakeSource(
        pipelines={
            SHA_A: make_pipeline(SHA_A, make_job(1, "build"), make_job(2, "test"), pipeline_id=1),
            SHA_B: make_pipeline(SHA_B, make_job(3, "build"), pipeline_id=2),
        },
        logs={1: "line one\nline two\n", 3: "b log\n"},
    )


@pytest.fixture
def controller(source: FakeSource, spawner: CollectingSpawner) -> Generator[PipelineController]:
    controller = PipelineController(source, spawner, request_timeout=1.0)
    yield controller
    controller.close()


async def _settle(controller: PipelineController, spawner: CollectingSpawner) -> None:
    await spawner.run_all()
    controller.drain()


# =============================================================================
# Construction and initial state
# =============================================================================


def test_initial_snapshot_is_hidden_without_selection(controller: PipelineController) -> None:
    assert controller.snapshot() == Hidden()
    assert controller.generation == 0


@pytest.mark.parametrize("timeout", [0, -1.0])
def test_rejects_non_positive_timeout(
    source: FakeSource, spawner: CollectingSpawner, timeout: float
) -> None:
    with pytest.raises(ValueError, match="request_timeout"):
        PipelineController(source, spawner, request_timeout=timeout)


def test_drain_with_nothing_pending(controller: PipelineController) -> None:
    assert controller.drain() is False


# =============================================================================
# Selection and fetching
# =============================================================================


@pytest.mark.anyio
async def test_select_shows_loading_then_loaded(
    controller: PipelineController, spawner: CollectingSpawner, source: FakeSource
) -> None:
    controller.select_commit(SHA_A)

    assert controller.snapshot() == Loading(SHA_A)
    assert len(spawner.tasks) == 1

    await spawner.run_all()
    assert controller.snapshot() == Loading(SHA_A), "results apply only on drain"
    assert controller.drain() is True

    state = controller.snapshot()
    assert isinstance(state, Loaded)
    assert state.pipeline.id == 1
    assert source.calls == [SHA_A]


@pytest.mark.anyio
async def test_select_same_commit_is_noop(
    controller: PipelineController, spawner: CollectingSpawner
) -> None:
    controller.select_commit(SHA_A)
    generation = controller.generation

    controller.select_commit(SHA_A)

    assert controller.generation == generation
    assert len(spawner.tasks) == 1


@pytest.mark.anyio
async def test_out_of_order_results_never_show_stale_commit(
    controller: PipelineController, spawner: CollectingSpawner
) -> None:
    controller.select_commit(SHA_A)
    controller.select_commit(SHA_B)

    # B's response arrives first, then A's late one
    await spawner.run(1)
    controller.drain()
    await spawner.run(0)
    controller.drain()

    state = controller.snapshot()
    assert isinstance(state, Loaded)
    assert state.pipeline.sha == SHA_B
    assert SHA_A not in controller.cache
    assert controller.in_flight == 0


@pytest.mark.anyio
async def test_stale_result_discarded_even_when_commit_reselected(
    controller: PipelineController, spawner: CollectingSpawner, source: FakeSource
) -> None:
    """Going A -> B -> A spawns a fresh fetch; the first A result is from an old generation."""
    controller.select_commit(SHA_A)
    controller.select_commit(SHA_B)
    controller.select_commit(SHA_A)
    assert len(spawner.tasks) == 3

    await spawner.run(0)
    controller.drain()
    assert controller.snapshot() == Loading(SHA_A)

    await _settle(controller, spawner)
    assert isinstance(controller.snapshot(), Loaded)


@pytest.mark.anyio
async def test_cache_hit_makes_no_network_call(
    controller: PipelineController, spawner: CollectingSpawner, source: FakeSource
) -> None:
    controller.select_commit(SHA_A)
    await _settle(controller, spawner)
    controller.select_commit(SHA_B)
    await _settle(controller, spawner)

    controller.select_commit(SHA_A)

    assert spawner.tasks == []
    assert source.calls == [SHA_A, SHA_B]
    state = controller.snapshot()
    assert isinstance(state, Loaded)
    assert state.pipeline.sha == SHA_A


@pytest.mark.anyio
async def test_no_pipeline_is_empty(
    controller: PipelineController, spawner: CollectingSpawner
) -> None:
    controller.select_commit(SHA_C)
    await _settle(controller, spawner)

    assert controller.snapshot() == Empty(SHA_C)


@pytest.mark.anyio
async def test_empty_is_cached(
    controller: PipelineController, spawner: CollectingSpawner, source: FakeSource
) -> None:
    controller.select_commit(SHA_C)
    await _settle(controller, spawner)
    controller.select_commit(SHA_A)
    await _settle(controller, spawner)

    controller.select_commit(SHA_C)

    assert spawner.tasks == []
    assert controller.snapshot() == Empty(SHA_C)
    assert source.calls.count(SHA_C) == 1


@pytest.mark.anyio
async def test_select_none_hides_panel(
    controller: PipelineController, spawner: CollectingSpawner
) -> None:
    controller.select_commit(SHA_A)
    controller.select_commit(None)

    assert controller.snapshot() == Hidden()


# =============================================================================
# Failures and refresh
# =============================================================================


@pytest.mark.anyio
async def test_timeout_then_refresh_recovers(
    controller: PipelineController, spawner: CollectingSpawner, source: FakeSource
) -> None:
    pipeline = source.pipelines[SHA_A]
    source.pipelines[SHA_A] = exceptions.TransportError("Fetching pipelines timed out after 1s")

    controller.select_commit(SHA_A)
    await _settle(controller, spawner)

    state = controller.snapshot()
    assert isinstance(state, Failed)
    assert state.kind == FailureKind.TRANSPORT
    assert "timed out" in state.reason
    assert state.hint == "Press r to retry"

    # No automatic retry
    assert spawner.tasks == []
    controller.drain()
    assert isinstance(controller.snapshot(), Failed)

    source.pipelines[SHA_A] = pipeline
    controller.refresh()
    assert controller.snapshot() == Loading(SHA_A)

    await _settle(controller, spawner)
    state = controller.snapshot()
    assert isinstance(state, Loaded)
    assert state.pipeline == pipeline


@pytest.mark.anyio
async def test_auth_failure(
    controller: PipelineController, spawner: CollectingSpawner, source: FakeSource
) -> None:
    source.pipelines[SHA_A] = exceptions.AuthError("GitLab rejected the access token (401)")

    controller.select_commit(SHA_A)
    await _settle(controller, spawner)

    state = controller.snapshot()
    assert isinstance(state, Failed)
    assert state.kind == FailureKind.AUTH
    assert "access token" in state.hint


@pytest.mark.anyio
async def test_unexpected_error_becomes_transport_failure(
    controller: PipelineController,
    spawner: CollectingSpawner,
    source: FakeSource,
    caplog: pytest.LogCaptureFixture,
) -> None:
    source.pipelines[SHA_A] = RuntimeError("bug")

    controller.select_commit(SHA_A)
    with caplog.at_level(logging.ERROR, logger="pipeview.controller"):
        await _settle(controller, spawner)

    state = controller.snapshot()
    assert isinstance(state, Failed)
    assert state.kind == FailureKind.TRANSPORT
    assert "Unexpected error" in caplog.text


@pytest.mark.anyio
async def test_failed_entry_is_refetched_on_reselect(
    controller: PipelineController, spawner: CollectingSpawner, source: FakeSource
) -> None:
    source.pipelines[SHA_A] = exceptions.TransportError("boom")
    controller.select_commit(SHA_A)
    await _settle(controller, spawner)
    controller.select_commit(SHA_B)
    await _settle(controller, spawner)

    controller.select_commit(SHA_A)

    assert controller.snapshot() == Loading(SHA_A)
    assert len(spawner.tasks) == 1


@pytest.mark.anyio
async def test_refresh_bypasses_cache_and_bumps_generation(
    controller: PipelineController, spawner: CollectingSpawner, source: FakeSource
) -> None:
    controller.select_commit(SHA_A)
    await _settle(controller, spawner)
    generation = controller.generation

    source.pipelines[SHA_A] = make_pipeline(SHA_A, make_job(1, "build", "running"), pipeline_id=5)
    controller.refresh()

    assert controller.generation == generation + 1
    assert controller.snapshot() == Loading(SHA_A)
    await _settle(controller, spawner)
    state = controller.snapshot()
    assert isinstance(state, Loaded)
    assert state.pipeline.id == 5
    assert source.calls == [SHA_A, SHA_A]


@pytest.mark.anyio
async def test_refresh_result_after_selection_change_is_discarded(
    controller: PipelineController, spawner: CollectingSpawner
) -> None:
    controller.select_commit(SHA_A)
    await _settle(controller, spawner)
    controller.refresh()
    controller.select_commit(SHA_B)

    await _settle(controller, spawner)

    assert SHA_A not in controller.cache
    state = controller.snapshot()
    assert isinstance(state, Loaded)
    assert state.pipeline.sha == SHA_B


def test_refresh_without_selection_is_noop(
    controller: PipelineController, spawner: CollectingSpawner
) -> None:
    controller.refresh()

    assert controller.generation == 0
    assert spawner.tasks == []


# =============================================================================
# Panel visibility
# =============================================================================


@pytest.mark.anyio
async def test_toggle_panel_is_orthogonal_to_fetching(
    controller: PipelineController, spawner: CollectingSpawner
) -> None:
    controller.select_commit(SHA_A)
    generation = controller.generation

    assert controller.toggle_panel() is False
    assert controller.snapshot() == Hidden()

    # The in-flight fetch still completes and lands in the cache while hidden
    await _settle(controller, spawner)
    assert SHA_A in controller.cache
    assert controller.generation == generation

    assert controller.toggle_panel() is True
    assert isinstance(controller.snapshot(), Loaded)
    assert spawner.tasks == []


@pytest.mark.anyio
async def test_selection_while_hidden_still_fetches(
    source: FakeSource, spawner: CollectingSpawner
) -> None:
    controller = PipelineController(source, spawner, visible=False)
    controller.select_commit(SHA_A)
    await _settle(controller, spawner)

    assert controller.snapshot() == Hidden()
    controller.toggle_panel()
    assert isinstance(controller.snapshot(), Loaded)
    controller.close()


# =============================================================================
# LRU bound
# =============================================================================


@pytest.mark.anyio
async def test_cache_is_bounded(spawner: CollectingSpawner) -> None:
    commits = [f"{i:040x}" for i in range(5)]
    source = FakeSource(pipelines={sha: make_pipeline(sha) for sha in commits})
    controller = PipelineController(source, spawner, cache_size=3)

    for sha in commits:
        controller.select_commit(sha)
        await _settle(controller, spawner)

    assert len(controller.cache) == 3
    assert list(controller.cache) == commits[2:]
    controller.close()


# =============================================================================
# Job cursor
# =============================================================================


@pytest.mark.parametrize(
    ("jobs", "expected"),
    [
        pytest.param(
            [make_job(1, "a", "success"), make_job(2, "b", "failed"), make_job(3, "b", "failed")],
            JobCursor(1, 0),
            id="first_failed",
        ),
        pytest.param(
            [
                make_job(1, "a", "failed"),
                make_job(2, "b", "running", started_at="2024-01-15T10:00:00Z"),
                make_job(3, "b", "running", started_at="2024-01-15T10:05:00Z"),
            ],
            JobCursor(1, 1),
            id="newest_running_beats_failed",
        ),
        pytest.param(
            [make_job(1, "a", "success"), make_job(2, "b", "success")],
            JobCursor(0, 0),
            id="first_job",
        ),
    ],
)
def test_pick_initial_cursor(jobs: list[Job], expected: JobCursor) -> None:
    pipeline = make_pipeline(SHA_A, *jobs)

    assert pick_initial_cursor(pipeline) == expected


def test_pick_initial_cursor_no_jobs() -> None:
    assert pick_initial_cursor(make_pipeline(SHA_A)) is None


@pytest.mark.anyio
async def test_cursor_navigation_clamps(
    controller: PipelineController, spawner: CollectingSpawner, source: FakeSource
) -> None:
    source.pipelines[SHA_A] = make_pipeline(
        SHA_A, make_job(1, "build"), make_job(2, "test"), make_job(3, "test")
    )
    controller.select_commit(SHA_A)
    await _settle(controller, spawner)

    def cursor() -> JobCursor | None:
        state = controller.snapshot()
        assert isinstance(state, Loaded)
        return state.cursor

    assert cursor() == JobCursor(0, 0)
    controller.move_stage(-1)
    assert cursor() == JobCursor(0, 0)
    controller.move_stage(1)
    controller.move_job(1)
    assert cursor() == JobCursor(1, 1)
    controller.move_job(5)
    assert cursor() == JobCursor(1, 1)
    controller.move_stage(10)
    assert cursor() == JobCursor(1, 0)


def test_cursor_moves_without_pipeline_are_noops(controller: PipelineController) -> None:
    controller.move_stage(1)
    controller.move_job(1)

    assert controller.snapshot() == Hidden()


# =============================================================================
# Job logs
# =============================================================================


async def _load_a(controller: PipelineController, spawner: CollectingSpawner) -> None:
    controller.select_commit(SHA_A)
    await _settle(controller, spawner)


def _log_state(controller: PipelineController) -> object:
    state = controller.snapshot()
    assert isinstance(state, Loaded)
    return state.log


@pytest.mark.anyio
async def test_toggle_job_log_fetches_and_parses(
    controller: PipelineController, spawner: CollectingSpawner, source: FakeSource
) -> None:
    await _load_a(controller, spawner)

    controller.toggle_job_log()
    assert _log_state(controller) == LogLoading(1)

    await _settle(controller, spawner)
    log = _log_state(controller)
    assert isinstance(log, LogLoaded)
    assert [line.content for line in log.lines] == ["line one", "line two"]
    assert source.log_calls == [1]


@pytest.mark.anyio
async def test_toggle_job_log_off_and_on_uses_cache(
    controller: PipelineController, spawner: CollectingSpawner, source: FakeSource
) -> None:
    await _load_a(controller, spawner)
    controller.toggle_job_log()
    await _settle(controller, spawner)

    controller.toggle_job_log()
    assert _log_state(controller) is None
    controller.toggle_job_log()

    assert isinstance(_log_state(controller), LogLoaded)
    assert spawner.tasks == []
    assert source.log_calls == [1]


@pytest.mark.anyio
async def test_duplicate_log_fetch_suppressed(
    controller: PipelineController, spawner: CollectingSpawner
) -> None:
    await _load_a(controller, spawner)

    controller.toggle_job_log()
    controller.toggle_job_log()
    controller.toggle_job_log()

    assert len(spawner.tasks) == 1
    assert controller.in_flight == 1


@pytest.mark.anyio
async def test_missing_job_log_is_empty(
    controller: PipelineController, spawner: CollectingSpawner
) -> None:
    await _load_a(controller, spawner)
    controller.move_stage(1)  # job 2 has no log

    controller.toggle_job_log()
    await _settle(controller, spawner)

    assert _log_state(controller) == LogLoaded(2, ())


@pytest.mark.anyio
async def test_failed_job_log_retries_on_reopen(
    controller: PipelineController, spawner: CollectingSpawner, source: FakeSource
) -> None:
    await _load_a(controller, spawner)
    source.logs[1] = exceptions.TransportError("request timed out")

    controller.toggle_job_log()
    await _settle(controller, spawner)
    log = _log_state(controller)
    assert isinstance(log, LogFailed)
    assert "timed out" in log.reason

    source.logs[1] = "ok\n"
    controller.toggle_job_log()
    controller.toggle_job_log()
    assert _log_state(controller) == LogLoading(1)

    await _settle(controller, spawner)
    assert isinstance(_log_state(controller), LogLoaded)


@pytest.mark.anyio
async def test_moving_cursor_closes_log(
    controller: PipelineController, spawner: CollectingSpawner
) -> None:
    await _load_a(controller, spawner)
    controller.toggle_job_log()

    controller.move_stage(1)

    assert _log_state(controller) is None


@pytest.mark.anyio
async def test_log_result_after_selection_change_is_discarded(
    controller: PipelineController, spawner: CollectingSpawner
) -> None:
    await _load_a(controller, spawner)
    controller.toggle_job_log()
    controller.select_commit(SHA_B)

    await _settle(controller, spawner)

    assert 1 not in controller.log_cache


@pytest.mark.anyio
async def test_refresh_refetches_open_log(
    controller: PipelineController, spawner: CollectingSpawner, source: FakeSource
) -> None:
    await _load_a(controller, spawner)
    controller.toggle_job_log()
    await _settle(controller, spawner)

    source.logs[1] = "new output\n"
    controller.refresh()
    assert len(spawner.tasks) == 2
    await _settle(controller, spawner)

    log = _log_state(controller)
    assert isinstance(log, LogLoaded)
    assert [line.content for line in log.lines] == ["new output"]


@pytest.mark.anyio
async def test_refresh_moves_log_to_retried_job(
    controller: PipelineController, spawner: CollectingSpawner, source: FakeSource
) -> None:
    await _load_a(controller, spawner)
    controller.toggle_job_log()
    await _settle(controller, spawner)

    # A retry replaces job 1 with job 5 in the same slot
    source.pipelines[SHA_A] = make_pipeline(
        SHA_A, make_job(5, "build"), make_job(2, "test"), pipeline_id=1
    )
    source.logs[5] = "retried\n"
    controller.refresh()
    await _settle(controller, spawner)

    assert _log_state(controller) == LogLoading(5)
    await _settle(controller, spawner)

    log = _log_state(controller)
    assert isinstance(log, LogLoaded)
    assert log.job_id == 5
    assert [line.content for line in log.lines] == ["retried"]
    assert source.log_calls[-1] == 5


@pytest.mark.anyio
async def test_refresh_closes_log_when_pipeline_has_no_jobs(
    controller: PipelineController, spawner: CollectingSpawner, source: FakeSource
) -> None:
    await _load_a(controller, spawner)
    controller.toggle_job_log()
    await _settle(controller, spawner)

    source.pipelines[SHA_A] = make_pipeline(SHA_A, pipeline_id=1)
    controller.refresh()
    await _settle(controller, spawner)

    assert _log_state(controller) is None
    assert spawner.tasks == []


def test_toggle_job_log_without_pipeline_is_noop(
    controller: PipelineController, spawner: CollectingSpawner
) -> None:
    controller.select_commit(SHA_A)
    spawner.close()

    controller.toggle_job_log()

    assert spawner.tasks == []


# =============================================================================
# Shutdown
# =============================================================================


@pytest.mark.anyio
async def test_results_after_close_are_dropped(
    controller: PipelineController, spawner: CollectingSpawner
) -> None:
    controller.select_commit(SHA_A)
    controller.close()

    await spawner.run_all()

    controller.close()


@pytest.mark.anyio
async def test_drain_after_close_is_noop(
    controller: PipelineController, spawner: CollectingSpawner
) -> None:
    controller.select_commit(SHA_A)
    await spawner.run_all()
    controller.close()

    assert controller.drain() is False
    assert controller.drain() is False
