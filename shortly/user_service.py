"""
Управление пользователями: регистрация, подтверждение email, вход и удаление аккаунта

Подтверждение email:
1. register_user() создает пользователя с email_verified=False, выдает токен и отправляет письмо
2. verify_email() проверяет токен и отмечает email подтвержденным
3. resend_verification_email() выдает новый токен и отправляет письмо повторно
4. authenticate_user() пускает только пользователей с подтвержденным email
"""
import logging
import traceback
import uuid
from datetime import datetime, timedelta
from typing import Dict, List

from sqlalchemy.orm import Session

from . import auth, email_service, models, schemas, url_service
from .config import VERIFICATION_TOKEN_TTL_DAYS, DELETION_GRACE_PERIOD_DAYS
from .exceptions import (
    AccountNotFound,
    DeletionNotScheduled,
    EmailAlreadyExists,
    EmailAlreadyVerified,
    EmailNotVerified,
    InvalidCredentials,
    InvalidVerificationToken,
    UserNotFound,
    UsernameAlreadyExists,
    VerificationTokenExpired,
)

logger = logging.getLogger(__name__)


def generate_verification_token() -> str:
    return str(uuid.uuid4())


def register_user(db: Session, username: str, password: str, email: str) -> models.User:
    """
    Регистрация пользователя и отправка письма для подтверждения

    Ошибка отправки письма не отменяет регистрацию: пользователь может
    запросить письмо повторно.

    Raises:
        UsernameAlreadyExists: Имя пользователя занято
        EmailAlreadyExists: Email занят
    """
    logger.debug(f"Attempting to register user with username: {username}")

    if db.query(models.User).filter(models.User.username == username).first():
        logger.warning(f"Username already registered: {username}")
        raise UsernameAlreadyExists(username)

    if db.query(models.User).filter(models.User.email == email).first():
        logger.warning(f"Email already registered: {email}")
        raise EmailAlreadyExists(email)

    verification_token = generate_verification_token()
    user = models.User(
        username=username,
        email=email,
        hashed_password=auth.get_password_hash(password),
        role="ROLE_USER",
        email_verified=False,
        verification_token=verification_token,
        verification_token_expiry=datetime.now() + timedelta(days=VERIFICATION_TOKEN_TTL_DAYS),
    )

    try:
        db.add(user)
        db.commit()
        db.refresh(user)
    except Exception as e:
        db.rollback()
        logger.error(f"Error creating user: {str(e)}")
        logger.error(traceback.format_exc())
        raise

    logger.info(f"User registered successfully: {username}")

    try:
        email_service.send_verification_email(
            user.email,
            user.username,
            email_service.build_verification_link(verification_token),
        )
    except Exception as e:
        logger.error(f"Failed to send verification email to {user.email}: {str(e)}")

    return user


def verify_email(db: Session, token: str) -> bool:
    """
    Подтверждение email по токену из письма

    Raises:
        InvalidVerificationToken: Токен неизвестен или уже использован
        EmailAlreadyVerified: Email уже подтвержден
        VerificationTokenExpired: Срок действия токена истек
    """
    user = db.query(models.User).filter(models.User.verification_token == token).first()
    if not user:
        logger.warning("Verification attempted with unknown token")
        raise InvalidVerificationToken()

    # Проверка подтверждения идет раньше проверки срока
    if user.email_verified:
        raise EmailAlreadyVerified()

    if user.verification_token_expiry is not None and user.verification_token_expiry < datetime.now():
        logger.warning(f"Expired verification token used for {user.email}")
        raise VerificationTokenExpired(user.email)

    user.email_verified = True
    user.verification_token = None
    user.verification_token_expiry = None
    db.commit()

    logger.info(f"Email verified for user: {user.username}")
    return True


def resend_verification_email(db: Session, email: str) -> None:
    """
    Новый токен подтверждения и повторная отправка письма

    Raises:
        AccountNotFound: Нет пользователя с таким email
        EmailAlreadyVerified: Email уже подтвержден
        EmailDeliveryError: Письмо не удалось отправить
    """
    user = db.query(models.User).filter(models.User.email == email).first()
    if not user:
        raise AccountNotFound()

    if user.email_verified:
        raise EmailAlreadyVerified()

    new_token = generate_verification_token()
    user.verification_token = new_token
    user.verification_token_expiry = datetime.now() + timedelta(days=VERIFICATION_TOKEN_TTL_DAYS)
    db.commit()

    email_service.resend_verification_email(
        user.email,
        user.username,
        email_service.build_verification_link(new_token),
    )


def authenticate_user(db: Session, username: str, password: str) -> Dict[str, str]:
    """
    Вход по логину и паролю

    Returns:
        Словарь с подписанным токеном, именем пользователя и email

    Raises:
        UserNotFound: Пользователь не существует
        EmailNotVerified: Email не подтвержден
        InvalidCredentials: Неверный пароль
    """
    logger.debug(f"Login attempt for username: {username}")

    user = auth.get_user(db, username)
    if not user:
        logger.warning(f"Login attempt for unknown user: {username}")
        raise UserNotFound(username)

    if not user.email_verified:
        logger.warning(f"Login attempt with unverified email: {username}")
        raise EmailNotVerified()

    if not auth.authenticate_user(db, username, password):
        logger.warning(f"Failed login attempt for username: {username}")
        raise InvalidCredentials()

    token = auth.create_access_token(data={"sub": user.username, "email": user.email})
    logger.info(f"User {username} logged in successfully")
    return {"token": token, "username": user.username, "email": user.email}


def get_user_by_username(db: Session, username: str) -> models.User:
    user = auth.get_user(db, username)
    if not user:
        raise UserNotFound(username)
    return user


def get_user_profile(db: Session, username: str) -> schemas.UserProfile:
    return schemas.UserProfile.model_validate(get_user_by_username(db, username))


def schedule_account_deletion(db: Session, username: str) -> models.User:
    """Мягкое удаление: аккаунт удаляется планировщиком по истечении периода ожидания"""
    user = get_user_by_username(db, username)
    now = datetime.now()
    user.is_deleted = True
    user.deletion_scheduled_at = now
    user.deletion_date = now + timedelta(days=DELETION_GRACE_PERIOD_DAYS)
    db.commit()
    logger.info(f"Account {username} scheduled for deletion on {user.deletion_date.isoformat()}")
    return user


def cancel_account_deletion(db: Session, username: str) -> models.User:
    user = get_user_by_username(db, username)
    if not user.is_deleted:
        raise DeletionNotScheduled()
    user.is_deleted = False
    user.deletion_scheduled_at = None
    user.deletion_date = None
    db.commit()
    logger.info(f"Account deletion cancelled for {username}")
    return user


def _delete_user(db: Session, user: models.User) -> None:
    username = user.username
    try:
        deleted_urls = url_service.delete_all_urls_by_user(db, user)
        db.delete(user)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Error deleting user {username}: {str(e)}")
        logger.error(traceback.format_exc())
        raise
    logger.info(f"Deleted user {username} with {deleted_urls} URLs")


def delete_user_account(db: Session, username: str) -> None:
    """Немедленное удаление аккаунта со всеми ссылками"""
    _delete_user(db, get_user_by_username(db, username))


def delete_user_account_by_id(db: Session, user_id: int) -> None:
    """Удаление аккаунта по id (используется планировщиком)"""
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise UserNotFound(str(user_id))
    _delete_user(db, user)


def find_users_to_delete(db: Session, now: datetime) -> List[models.User]:
    """Пользователи, у которых истек период ожидания удаления"""
    return db.query(models.User).filter(
        models.User.is_deleted == True,
        models.User.deletion_date < now
    ).all()
