"""
Unit Tests for Generation Progress

Tests:
- Stage machine transitions
- Monotonic progress
- Terminal entry expiry
"""

import pytest

from analytics_reports.progress import (
    ALLOWED_TRANSITIONS,
    GenerationStage,
    InMemoryProgressStore,
    ProgressTracker,
)


class FakeMonotonic:

    def __init__(self):
        self.value = 1000.0

    def __call__(self):
        return self.value


class TestStageMachine:
    """Test allowed transitions"""

    def test_pipeline_order(self):
        store = InMemoryProgressStore()
        tracker = ProgressTracker(store, "r1")

        tracker.advance(GenerationStage.INITIALIZING, 5, "Loading template")
        tracker.advance(GenerationStage.FETCHING_DATA, 15, "Fetching")
        tracker.advance(GenerationStage.PROCESSING_SECTIONS, 60, "Processing")
        tracker.advance(GenerationStage.GENERATING_EXPORT, 75, "Exporting")
        tracker.advance(GenerationStage.SAVING, 90, "Saving")
        progress = tracker.advance(GenerationStage.COMPLETED, 100, "Done")

        assert progress.status == GenerationStage.COMPLETED
        assert store.get("r1").progress == 100

    def test_skipping_a_stage_is_rejected(self):
        tracker = ProgressTracker(InMemoryProgressStore(), "r1")

        with pytest.raises(ValueError):
            tracker.advance(GenerationStage.SAVING, 90, "Saving")

    def test_failed_reachable_from_every_running_stage(self):
        for stage, targets in ALLOWED_TRANSITIONS.items():
            if not stage.is_terminal:
                assert GenerationStage.FAILED in targets

    def test_terminal_stages_have_no_exit(self):
        assert ALLOWED_TRANSITIONS[GenerationStage.COMPLETED] == ()
        assert ALLOWED_TRANSITIONS[GenerationStage.FAILED] == ()

    def test_fail_records_error(self):
        tracker = ProgressTracker(InMemoryProgressStore(), "r1")
        tracker.advance(GenerationStage.INITIALIZING, 5, "Loading template")

        progress = tracker.fail("Template not found: x")

        assert progress.status == GenerationStage.FAILED
        assert progress.error == "Template not found: x"
        assert tracker.fail("again").error == "Template not found: x"


class TestProgressValues:
    """Test percent handling"""

    def test_percent_never_decreases(self):
        tracker = ProgressTracker(InMemoryProgressStore(), "r1")
        tracker.advance(GenerationStage.INITIALIZING, 5, "Loading template")
        tracker.advance(GenerationStage.FETCHING_DATA, 40, "Fetching a")

        progress = tracker.advance(GenerationStage.FETCHING_DATA, 20, "Fetching b", current_section="b")

        assert progress.progress == 40
        assert progress.current_section == "b"

    def test_percent_capped_at_100(self):
        tracker = ProgressTracker(InMemoryProgressStore(), "r1")

        assert tracker.advance(GenerationStage.INITIALIZING, 150, "x").progress == 100


class TestProgressStore:
    """Test time-to-live behaviour"""

    def test_running_entries_do_not_expire(self):
        clock = FakeMonotonic()
        store = InMemoryProgressStore(ttl_seconds=10, clock=clock)
        ProgressTracker(store, "r1").advance(GenerationStage.INITIALIZING, 5, "x")

        clock.value += 1000

        assert store.get("r1") is not None

    def test_terminal_entries_expire_after_ttl(self):
        clock = FakeMonotonic()
        store = InMemoryProgressStore(ttl_seconds=10, clock=clock)
        ProgressTracker(store, "r1").fail("boom")

        clock.value += 5
        assert store.get("r1") is not None

        clock.value += 6
        assert store.get("r1") is None
        assert len(store) == 0
