import pytest
from datetime import datetime, timedelta
from unittest.mock import patch, MagicMock
from apscheduler.triggers.cron import CronTrigger
from shortly import models, scheduler
from conftest import make_user, make_url


def schedule_for_deletion(db, user, deletion_date):
    user.is_deleted = True
    user.deletion_scheduled_at = deletion_date - timedelta(days=5)
    user.deletion_date = deletion_date
    db.commit()


def test_cleanup_scheduled_deleted_users(db, test_user, other_user):
    """Удаляются только пользователи с истекшим периодом ожидания"""
    make_url(db, test_user, "doomed01")
    schedule_for_deletion(db, test_user, datetime.now() - timedelta(hours=1))
    schedule_for_deletion(db, other_user, datetime.now() + timedelta(days=2))

    assert scheduler.cleanup_scheduled_deleted_users(db) == 1

    usernames = [user.username for user in db.query(models.User)]
    assert usernames == [other_user.username]
    assert db.query(models.UrlMapping).count() == 0


def test_cleanup_scheduled_deleted_users_skips_failures(db):
    """Ошибка удаления одного пользователя не останавливает остальных"""
    first = make_user(db, "first", "first@example.com")
    second = make_user(db, "second", "second@example.com")
    schedule_for_deletion(db, first, datetime.now() - timedelta(hours=2))
    schedule_for_deletion(db, second, datetime.now() - timedelta(hours=1))

    with patch(
        "shortly.scheduler.user_service.delete_user_account_by_id",
        side_effect=[Exception("Database is locked"), None]
    ) as mock_delete:
        deleted = scheduler.cleanup_scheduled_deleted_users(db)

    assert deleted == 1
    assert mock_delete.call_count == 2
    assert {call.args[1] for call in mock_delete.call_args_list} == {first.id, second.id}


def test_cleanup_with_explicit_now(db, test_user):
    schedule_for_deletion(db, test_user, datetime(2024, 1, 10))

    assert scheduler.cleanup_scheduled_deleted_users(db, now=datetime(2024, 1, 9)) == 0
    assert scheduler.cleanup_scheduled_deleted_users(db, now=datetime(2024, 1, 11)) == 1


def test_url_cleanup_tasks(db, test_user):
    make_url(db, test_user, "expired1", expires_at=datetime.now() - timedelta(days=1))
    make_url(db, test_user, "ancient1", created_date=datetime.now() - timedelta(days=200))

    scheduler.cleanup_expired_urls(db)
    scheduler.cleanup_old_urls(db)

    remaining = db.query(models.UrlMapping).all()
    assert [(url_mapping.short_url, url_mapping.is_active) for url_mapping in remaining] == [("expired1", False)]


def test_job_closes_session_and_rolls_back_on_error():
    mock_session = MagicMock()
    with patch("shortly.scheduler.url_service.cleanup_expired_urls", side_effect=Exception("Test exception")):
        scheduler.cleanup_expired_urls_job(session_factory=lambda: mock_session)

    mock_session.rollback.assert_called_once()
    mock_session.close.assert_called_once()


def test_job_runs_with_fresh_session():
    mock_session = MagicMock()
    with patch("shortly.scheduler.url_service.cleanup_old_urls") as mock_cleanup:
        scheduler.cleanup_old_urls_job(session_factory=lambda: mock_session)

    mock_cleanup.assert_called_once_with(mock_session)
    mock_session.rollback.assert_not_called()
    mock_session.close.assert_called_once()


def test_users_job_uses_session_factory():
    mock_session = MagicMock()
    with patch("shortly.scheduler.user_service.find_users_to_delete", return_value=[]) as mock_find:
        scheduler.cleanup_scheduled_deleted_users_job(session_factory=lambda: mock_session)

    assert mock_find.call_args.args[0] is mock_session
    mock_session.close.assert_called_once()


def test_create_scheduler():
    """Три независимые задачи с расписанием cron"""
    background_scheduler = scheduler.create_scheduler()
    jobs = {job.id: job for job in background_scheduler.get_jobs()}

    assert set(jobs) == {"cleanup_expired_urls", "cleanup_old_urls", "cleanup_scheduled_deleted_users"}
    for job in jobs.values():
        assert isinstance(job.trigger, CronTrigger)
    assert str(jobs["cleanup_old_urls"].trigger.fields[5]) == "0"
    assert background_scheduler.running is False
