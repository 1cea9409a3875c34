from datetime import timedelta

from apscheduler.schedulers.background import BackgroundScheduler

from wagers.models import BetType, CreateBetRequest
from wagers.scheduler import EXPIRY_JOB_ID, run_expiry_sweep, start_expiry_scheduler


class TestExpiryScheduler:
    """Tests for the auto-expire job wiring."""

    def test_job_registered_with_interval(self, wagers, settings):
        """Test that the sweep is registered on the configured interval."""
        scheduler = start_expiry_scheduler(wagers, settings, BackgroundScheduler())
        try:
            job = scheduler.get_job(EXPIRY_JOB_ID)
            assert job is not None
            assert job.trigger.interval == timedelta(minutes=settings.auto_expire_interval_minutes)
            assert job.args == (wagers,)
        finally:
            scheduler.shutdown(wait=False)

    def test_sweep_job_runs_service(self, wagers, members, clock):
        """Test that the job body expires overdue bets."""
        members("user-cam")
        wagers.create_bet(CreateBetRequest(
            chat_id="chat-squad",
            creator_id="user-cam",
            bet_type=BetType.SELF,
            description="Read a book this week",
            deadline=clock() + timedelta(hours=2),
        ))
        clock.advance(days=1)

        assert run_expiry_sweep(wagers) == 1
        assert run_expiry_sweep(wagers) == 0
