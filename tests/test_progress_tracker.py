"""
Progress tracker tests.
"""

import json

from services.streaming import EventType, ProgressTracker

WEIGHTS = {"assets": 30, "encode": 65, "finalize": 5}


class TestProgressTracker:

    def test_weighted_stages(self):
        tracker = ProgressTracker("job-1", stage_weights=WEIGHTS)

        tracker.stage_started("assets")
        tracker.progress(50, "half the downloads")
        assert tracker.get_summary()["progress_percent"] == 15

        tracker.stage_completed("assets")
        tracker.stage_started("encode")
        tracker.progress(50, "halfway encoded")
        assert tracker.get_summary()["progress_percent"] == 62.5
        assert tracker.get_summary()["current_stage"] == "encode"

    def test_progress_is_monotonic_and_below_100(self):
        tracker = ProgressTracker("job-1", stage_weights=WEIGHTS)
        tracker.stage_started("encode")
        tracker.progress(100, "done encoding")
        tracker.progress(10, "late, smaller report")
        tracker.stage_started("finalize")
        tracker.progress(100, "finalized")

        percents = [e.progress_percent for e in tracker.get_history()]
        assert percents == sorted(percents)
        assert max(percents) <= 99

        tracker.completed()
        assert tracker.get_history()[-1].progress_percent == 100

    def test_terminal_event_finishes_the_job(self):
        tracker = ProgressTracker("job-1")
        tracker.started()
        tracker.failed("encoder crashed", error="exit 1")

        tracker.progress(50, "ignored")
        tracker.completed()

        history = tracker.get_history()
        assert [e.event_type for e in history] == [EventType.STARTED, EventType.FAILED]
        assert history[-1].data == {"error": "exit 1"}
        assert tracker.finished

    def test_late_subscriber_gets_history(self):
        tracker = ProgressTracker("job-1")
        tracker.started()
        tracker.info("fetching")

        queue = tracker.subscribe()
        tracker.warning("scene 2 audio missing")

        events = [queue.get_nowait() for _ in range(queue.qsize())]
        assert [e.event_type for e in events] == [EventType.STARTED, EventType.INFO, EventType.WARNING]

    def test_unsubscribe(self):
        tracker = ProgressTracker("job-1")
        queue = tracker.subscribe()
        tracker.unsubscribe(queue)

        tracker.started()

        assert queue.empty()

    def test_callback_errors_are_contained(self):
        tracker = ProgressTracker("job-1")
        received = []

        def broken(event):
            raise RuntimeError("boom")

        tracker.on_event(broken)
        tracker.on_event(received.append)
        tracker.started()

        assert len(received) == 1

    def test_history_is_bounded(self):
        tracker = ProgressTracker("job-1", history_size=5)
        for i in range(20):
            tracker.info(f"message {i}")

        history = tracker.get_history()
        assert len(history) == 5
        assert history[-1].message == "message 19"


class TestProgressEvent:

    def test_sse_format(self):
        tracker = ProgressTracker("job-9")
        tracker.started("Rendering 3 scenes")
        event = tracker.get_history()[0]

        lines = event.to_sse().split("\n")

        assert lines[0] == f"id: {event.event_id}"
        assert lines[1] == "event: started"
        payload = json.loads(lines[2][len("data: "):])
        assert payload["job_id"] == "job-9"
        assert payload["message"] == "Rendering 3 scenes"
        assert event.to_sse().endswith("\n\n")

    def test_cli_line(self):
        tracker = ProgressTracker("job-9", stage_weights={"encode": 100})
        tracker.stage_started("encode")
        tracker.progress(50, "halfway")

        line = tracker.get_history()[-1].to_cli_line()

        assert line.startswith("[##########----------]")
        assert "encode | halfway" in line
