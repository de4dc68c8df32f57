from datetime import datetime
from typing import Callable, Optional
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session
from . import url_service, user_service
from .database import SessionLocal
import logging
import traceback

logger = logging.getLogger(__name__)

def _run_with_session(job: Callable[[Session], None], session_factory: Callable[[], Session]) -> None:
    db = session_factory()
    try:
        job(db)
    except Exception as e:
        db.rollback()
        logger.error(f"Scheduled job {job.__name__} failed: {str(e)}")
        logger.error(traceback.format_exc())
    finally:
        db.close()

def cleanup_expired_urls(db: Session) -> None:
    """Деактивация ссылок с истекшим сроком действия"""
    logger.info("Running scheduled task to cleanup expired URLs...")
    url_service.cleanup_expired_urls(db)
    logger.info("Expired URLs cleanup completed.")

def cleanup_old_urls(db: Session) -> None:
    """Удаление ссылок старше трех месяцев"""
    logger.info("Running scheduled task to cleanup old URLs...")
    url_service.cleanup_old_urls(db)
    logger.info("Old URLs cleanup completed.")

def cleanup_scheduled_deleted_users(db: Session, now: Optional[datetime] = None) -> int:
    """
    Окончательное удаление пользователей с истекшим периодом ожидания

    Ошибка удаления одного пользователя не прерывает обработку остальных.

    Returns:
        Количество удаленных пользователей
    """
    logger.info("Running scheduled task to cleanup users scheduled for deletion...")
    users_to_delete = user_service.find_users_to_delete(db, now or datetime.now())
    user_ids = [(user.id, user.username) for user in users_to_delete]

    deleted = 0
    for user_id, username in user_ids:
        try:
            logger.info(f"Permanently deleting user: {username}")
            user_service.delete_user_account_by_id(db, user_id)
            deleted += 1
        except Exception as e:
            logger.error(f"Failed to delete user {username}: {str(e)}")

    logger.info(f"User cleanup completed. Deleted {deleted} of {len(user_ids)} users.")
    return deleted

def cleanup_expired_urls_job(session_factory: Callable[[], Session] = SessionLocal) -> None:
    _run_with_session(cleanup_expired_urls, session_factory)

def cleanup_old_urls_job(session_factory: Callable[[], Session] = SessionLocal) -> None:
    _run_with_session(cleanup_old_urls, session_factory)

def cleanup_scheduled_deleted_users_job(session_factory: Callable[[], Session] = SessionLocal) -> None:
    _run_with_session(cleanup_scheduled_deleted_users, session_factory)

def create_scheduler() -> BackgroundScheduler:
    """
    Планировщик с тремя независимыми задачами очистки:
    истекшие ссылки и удаление пользователей - каждый час,
    старые ссылки - раз в сутки в полночь
    """
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        cleanup_expired_urls_job,
        CronTrigger(minute=0),
        id="cleanup_expired_urls",
        misfire_grace_time=300,
        coalesce=True,
    )
    scheduler.add_job(
        cleanup_old_urls_job,
        CronTrigger(hour=0, minute=0),
        id="cleanup_old_urls",
        misfire_grace_time=3600,
        coalesce=True,
    )
    scheduler.add_job(
        cleanup_scheduled_deleted_users_job,
        CronTrigger(minute=0),
        id="cleanup_scheduled_deleted_users",
        misfire_grace_time=300,
        coalesce=True,
    )
    return scheduler
