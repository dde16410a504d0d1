"""Unit tests for the worker's periodic jobs."""

from app.config.constants import RETRY_FAILED_EVENTS
from app.config.settings import settings
from tests.fakes import RecordingWorkQueue
from worker.initialization.scheduler import create_scheduler


class TestScheduler:
    def test_retry_pass_scheduled(self):
        scheduler = create_scheduler(RecordingWorkQueue())

        job = scheduler.get_job("retry_failed_events")

        assert job is not None
        assert job.trigger.interval.total_seconds() == settings.failed_event_retry_interval_seconds

    def test_retry_pass_only_enqueues(self):
        work_queue = RecordingWorkQueue()
        scheduler = create_scheduler(work_queue)

        scheduler.get_job("retry_failed_events").func()

        assert [(job.kind, job.payload) for job in work_queue.jobs] == [
            (RETRY_FAILED_EVENTS, {"limit": 100})
        ]
