"""Unit tests for the build status state machine."""

import pytest

from nlpromql.domain.build_status import BuildStage, BuildState, BuildStatus, BuildStatusTracker
from nlpromql.domain.errors import InvalidBuildTransitionError


@pytest.fixture
def tracker():
    return BuildStatusTracker()


@pytest.mark.unit
class TestBuildStatusTracker:
    def test_initial_status_is_idle(self, tracker):
        status = tracker.current

        assert status.state == BuildState.IDLE
        assert status.stage is None
        assert status.started_at is None
        assert status.duration is None

    def test_full_lifecycle(self, tracker):
        started = tracker.start()
        assert started.is_running
        assert started.build_id is not None

        for stage in BuildStage:
            assert tracker.enter_stage(stage).stage == stage

        finished = tracker.complete()

        assert finished.state == BuildState.COMPLETED
        assert finished.state.is_terminal
        assert finished.finished_at >= finished.started_at
        assert finished.build_id == started.build_id

    def test_fail_records_error(self, tracker):
        tracker.start()
        tracker.enter_stage(BuildStage.FETCHING_NAMES)

        failed = tracker.fail(RuntimeError("prometheus down"))

        assert failed.state == BuildState.FAILED
        assert failed.error == "prometheus down"
        assert failed.stage == BuildStage.FETCHING_NAMES

    def test_cannot_start_twice(self, tracker):
        tracker.start()

        with pytest.raises(InvalidBuildTransitionError):
            tracker.start()

    def test_restart_after_terminal_state(self, tracker):
        first = tracker.start()
        tracker.fail("boom")

        second = tracker.start()

        assert second.build_id != first.build_id
        assert second.error is None

    def test_stage_cannot_move_backwards(self, tracker):
        tracker.start()
        tracker.enter_stage(BuildStage.UPDATING_LABEL_INDEX)

        with pytest.raises(InvalidBuildTransitionError):
            tracker.enter_stage(BuildStage.FETCHING_NAMES)

    def test_transitions_require_running_build(self, tracker):
        with pytest.raises(InvalidBuildTransitionError):
            tracker.enter_stage(BuildStage.PERSISTING)
        with pytest.raises(InvalidBuildTransitionError):
            tracker.complete()

    def test_readers_keep_their_snapshot(self, tracker):
        tracker.start()
        observed = tracker.current

        tracker.enter_stage(BuildStage.FETCHING_LABELS)

        assert observed.stage is None
        assert tracker.current.stage == BuildStage.FETCHING_LABELS

    def test_update_stats(self, tracker):
        tracker.start()
        status = tracker.update_stats(new_metrics=3, failed_batches=1)

        assert status.stats.new_metrics == 3
        assert status.stats.failed_batches == 1
        assert status.stats.new_labels == 0


@pytest.mark.unit
def test_to_dict_serializes_enums_and_times():
    tracker = BuildStatusTracker()
    tracker.start()
    tracker.enter_stage(BuildStage.PERSISTING)
    payload = tracker.complete().to_dict()

    assert payload["state"] == "completed"
    assert payload["stage"] == "persisting"
    assert payload["finished_at"].endswith("+00:00")
    assert payload["stats"]["new_metrics"] == 0


@pytest.mark.unit
def test_default_status_to_dict():
    assert BuildStatus().to_dict()["state"] == "idle"
