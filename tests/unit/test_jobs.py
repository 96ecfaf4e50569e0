from datetime import date, datetime, time, timedelta, timezone

from tablebook.main import _build_scheduler
from tablebook.models.booking_lock import BookingLock
from tablebook.scheduler import jobs

TUESDAY = date(2026, 1, 6)


def test_scheduler_registers_maintenance_jobs():
    scheduler = _build_scheduler()
    assert {job.id for job in scheduler.get_jobs()} == {"lock_reaper", "pos_queue", "payment_timeout"}


def test_lock_reaper_job_uses_its_own_session(db, dinner, session_factory, monkeypatch):
    venue, service, _ = dinner
    long_ago = datetime.now(tz=timezone.utc) - timedelta(hours=1)
    lock = BookingLock(
        lock_token="stale-token",
        venue_id=venue.id,
        service_id=service.id,
        booking_date=TUESDAY,
        start_time=time(19, 0),
        party_size=2,
        locked_at=long_ago,
        expires_at=long_ago + timedelta(minutes=5),
    )
    db.add(lock)
    db.commit()

    monkeypatch.setattr(jobs, "SessionLocal", session_factory)
    jobs.run_lock_reaper_job()

    db.expire_all()
    assert db.get(BookingLock, lock.id).reason == "expired"


def test_jobs_swallow_and_log_failures(monkeypatch, caplog):
    class BrokenSession:
        closed = False

        def rollback(self):
            pass

        def close(self):
            BrokenSession.closed = True

        def execute(self, *args, **kwargs):
            raise RuntimeError("database unavailable")

    monkeypatch.setattr(jobs, "SessionLocal", BrokenSession)
    jobs.run_payment_timeout_job()

    assert BrokenSession.closed
    assert "Payment timeout job failed" in caplog.text
