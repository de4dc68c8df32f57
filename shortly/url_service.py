import calendar
import logging
import string
import traceback
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

import shortuuid
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import cache, models, schemas
from .config import SHORT_CODE_LENGTH, SHORT_CODE_MAX_RETRIES, OLD_URL_MAX_AGE_MONTHS
from .exceptions import ShortCodeGenerationError

logger = logging.getLogger(__name__)

SHORT_URL_ALPHABET = string.ascii_letters + string.digits

_short_url_generator = shortuuid.ShortUUID(alphabet=SHORT_URL_ALPHABET)


def generate_short_url() -> str:
    """Случайный код из 62 символов [a-zA-Z0-9]"""
    return _short_url_generator.random(length=SHORT_CODE_LENGTH)


def generate_unique_short_url(db: Session, max_retries: int = SHORT_CODE_MAX_RETRIES) -> str:
    """
    Генерирует код, которого еще нет в базе

    Args:
        db: Сессия базы данных
        max_retries: Максимальное число попыток

    Returns:
        Уникальный короткий код

    Raises:
        ShortCodeGenerationError: Если все попытки дали коллизию
    """
    for attempt in range(max_retries):
        short_url = generate_short_url()
        exists = db.query(models.UrlMapping.id).filter(models.UrlMapping.short_url == short_url).first()
        if not exists:
            return short_url
        logger.warning(f"Short URL collision on attempt {attempt + 1}: {short_url}")
    raise ShortCodeGenerationError(max_retries)


def normalize_datetime(value: Optional[datetime]) -> Optional[datetime]:
    """Приводит дату с часовым поясом к локальному naive-времени, в котором хранятся даты в БД"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def subtract_months(moment: datetime, months: int) -> datetime:
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def to_response(url_mapping: models.UrlMapping) -> schemas.UrlMappingResponse:
    return schemas.UrlMappingResponse(
        id=url_mapping.id,
        original_url=url_mapping.original_url,
        short_url=url_mapping.short_url,
        click_count=url_mapping.click_count,
        created_date=url_mapping.created_date,
        username=url_mapping.user.username,
        is_one_time_url=url_mapping.is_one_time_url,
        is_used=url_mapping.is_used,
        expires_at=url_mapping.expires_at,
        is_active=url_mapping.is_active,
    )


def create_short_url(
    db: Session,
    original_url: str,
    owner: models.User,
    is_one_time: bool = False,
    expires_at: Optional[datetime] = None,
) -> schemas.UrlMappingResponse:
    """
    Создание короткой ссылки

    Args:
        db: Сессия базы данных
        original_url: Исходный адрес
        owner: Владелец ссылки
        is_one_time: Одноразовая ссылка (одно открытие на устройство)
        expires_at: Момент истечения срока действия

    Returns:
        Представление созданной ссылки
    """
    short_url = generate_unique_short_url(db)
    url_mapping = models.UrlMapping(
        original_url=original_url,
        short_url=short_url,
        user_id=owner.id,
        created_date=datetime.now(),
        is_one_time_url=is_one_time,
        is_used=False,
        expires_at=normalize_datetime(expires_at),
        is_active=True,
        click_count=0,
    )
    try:
        db.add(url_mapping)
        db.commit()
        db.refresh(url_mapping)
    except Exception as e:
        db.rollback()
        logger.error(f"Error creating short URL: {str(e)}")
        logger.error(traceback.format_exc())
        raise

    logger.info(f"Created short URL: {short_url} -> {original_url} (owner: {owner.username})")
    return to_response(url_mapping)


def create_short_url_with_request(
    db: Session,
    request: schemas.CreateUrlRequest,
    owner: models.User,
) -> schemas.UrlMappingResponse:
    expires_at = normalize_datetime(request.expires_at)
    if expires_at is None and request.expires_in_hours is not None:
        expires_at = datetime.now() + timedelta(hours=request.expires_in_hours)
    return create_short_url(
        db,
        str(request.original_url),
        owner,
        is_one_time=request.is_one_time_url,
        expires_at=expires_at,
    )


def get_urls_by_user(db: Session, owner: models.User) -> List[schemas.UrlMappingResponse]:
    url_mappings = db.query(models.UrlMapping).filter(
        models.UrlMapping.user_id == owner.id
    ).order_by(models.UrlMapping.created_date.desc()).all()
    return [to_response(url_mapping) for url_mapping in url_mappings]


def resolve(db: Session, short_url: str, device_fingerprint: Optional[str] = None) -> Optional[models.UrlMapping]:
    """
    Разрешение короткой ссылки с учетом срока действия, одноразовости и подсчетом кликов

    Все изменения фиксируются одним коммитом. Строка ссылки блокируется
    на время проверки (SELECT ... FOR UPDATE там, где диалект это поддерживает),
    а повторная запись DeviceAccess для того же устройства отсекается
    уникальным ограничением.

    Args:
        db: Сессия базы данных
        short_url: Короткий код
        device_fingerprint: Отпечаток устройства (хэш IP + User-Agent)

    Returns:
        Ссылка для перенаправления или None, если переход невозможен
    """
    logger.debug(f"Resolving short URL: {short_url}")

    url_mapping = db.query(models.UrlMapping).filter(
        models.UrlMapping.short_url == short_url
    ).with_for_update().populate_existing().first()

    if not url_mapping:
        logger.warning(f"Short URL not found: {short_url}")
        db.commit()
        return None

    if not url_mapping.is_active:
        logger.warning(f"Short URL is inactive: {short_url}")
        db.commit()
        return None

    now = datetime.now()

    if url_mapping.expires_at is not None and now > url_mapping.expires_at:
        logger.info(f"Short URL {short_url} has expired, marking as inactive")
        url_mapping.is_active = False
        db.commit()
        cache.delete_redirect_cache(short_url)
        return None

    if url_mapping.is_one_time_url and device_fingerprint is not None:
        existing_access = db.query(models.DeviceAccess).filter(
            models.DeviceAccess.url_mapping_id == url_mapping.id,
            models.DeviceAccess.device_fingerprint == device_fingerprint
        ).first()
        if existing_access:
            logger.warning(f"One-time URL {short_url} already used by this device")
            db.commit()
            return None

        try:
            # Точка сохранения: конфликт откатывает только запись доступа, блокировка строки остается
            with db.begin_nested():
                db.add(models.DeviceAccess(
                    url_mapping_id=url_mapping.id,
                    device_fingerprint=device_fingerprint,
                    accessed_at=now,
                ))
        except IntegrityError:
            # Параллельный запрос с того же устройства успел записать доступ первым
            db.commit()
            logger.warning(f"Concurrent access to one-time URL {short_url} from the same device rejected")
            return None
        url_mapping.is_used = True

    url_mapping.click_count += 1
    db.add(models.ClickEvent(url_mapping_id=url_mapping.id, click_date=now))
    try:
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Error recording click for {short_url}: {str(e)}")
        logger.error(traceback.format_exc())
        raise

    logger.debug(f"Resolved {short_url} -> {url_mapping.original_url} (clicks: {url_mapping.click_count})")
    return url_mapping


def is_cacheable(url_mapping: models.UrlMapping) -> bool:
    """Кэшируются только обычные ссылки без срока действия: им не нужны проверки по строке"""
    return not url_mapping.is_one_time_url and url_mapping.expires_at is None


def record_cached_click(db: Session, short_url: str) -> Optional[str]:
    """
    Быстрый путь перенаправления по кэшу: строка ссылки не читается и не блокируется,
    клик записывается атомарным UPDATE и вставкой ClickEvent

    Returns:
        Исходный адрес или None, если записи в кэше нет или ссылка уже удалена
    """
    cached = cache.get_redirect_cache(short_url)
    if cached is None:
        return None

    url_mapping_id, original_url = cached
    updated = db.query(models.UrlMapping).filter(
        models.UrlMapping.id == url_mapping_id,
        models.UrlMapping.is_active == True
    ).update(
        {models.UrlMapping.click_count: models.UrlMapping.click_count + 1},
        synchronize_session=False
    )
    if not updated:
        db.commit()
        logger.info(f"Stale redirect cache entry for {short_url}, evicting")
        cache.delete_redirect_cache(short_url)
        return None

    db.add(models.ClickEvent(url_mapping_id=url_mapping_id, click_date=datetime.now()))
    try:
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Error recording cached click for {short_url}: {str(e)}")
        logger.error(traceback.format_exc())
        raise

    logger.debug(f"Redirect cache hit for {short_url}")
    return original_url


def get_redirect_url(db: Session, short_url: str, device_fingerprint: Optional[str] = None) -> Optional[str]:
    """
    Адрес перенаправления с учетом клика

    Обычные бессрочные ссылки обслуживаются из кэша; остальные (и промахи кэша)
    проходят полную проверку через resolve().
    """
    original_url = record_cached_click(db, short_url)
    if original_url is not None:
        return original_url

    url_mapping = resolve(db, short_url, device_fingerprint)
    if url_mapping is None:
        return None

    if is_cacheable(url_mapping):
        cache.set_redirect_cache(short_url, url_mapping.id, url_mapping.original_url)
    return url_mapping.original_url


def get_click_events_by_date(
    db: Session,
    short_url: str,
    start: datetime,
    end: datetime,
    owner: Optional[models.User] = None,
) -> Optional[List[schemas.ClickEventResponse]]:
    """
    Количество кликов по дням в интервале [start, end]

    Returns:
        Список по дням, отсортированный по дате, или None, если ссылка
        не найдена (или принадлежит другому пользователю, когда задан owner)
    """
    url_mapping = db.query(models.UrlMapping).filter(models.UrlMapping.short_url == short_url).first()
    if not url_mapping:
        return None
    if owner is not None and url_mapping.user_id != owner.id:
        logger.warning(f"User {owner.username} requested analytics for foreign URL {short_url}")
        return None

    click_dates = db.query(models.ClickEvent.click_date).filter(
        models.ClickEvent.url_mapping_id == url_mapping.id,
        models.ClickEvent.click_date >= start,
        models.ClickEvent.click_date <= end
    ).all()

    counts = Counter(click_date.date() for (click_date,) in click_dates)
    return [
        schemas.ClickEventResponse(click_date=click_day, count=count)
        for click_day, count in sorted(counts.items())
    ]


def get_total_clicks_by_user_and_date(
    db: Session,
    owner: models.User,
    start: date,
    end: date,
) -> Dict[date, int]:
    """Суммарные клики по всем ссылкам пользователя за дни с start по end включительно"""
    range_start = datetime.combine(start, datetime.min.time())
    range_end = datetime.combine(end + timedelta(days=1), datetime.min.time())

    click_dates = db.query(models.ClickEvent.click_date).join(models.UrlMapping).filter(
        models.UrlMapping.user_id == owner.id,
        models.ClickEvent.click_date >= range_start,
        models.ClickEvent.click_date < range_end
    ).all()

    counts = Counter(click_date.date() for (click_date,) in click_dates)
    return dict(sorted(counts.items()))


def cleanup_expired_urls(db: Session) -> int:
    """Деактивация ссылок с истекшим сроком действия (без удаления)"""
    now = datetime.now()
    expired_urls = db.query(models.UrlMapping).filter(
        models.UrlMapping.expires_at.isnot(None),
        models.UrlMapping.expires_at < now,
        models.UrlMapping.is_active == True
    ).all()

    for url_mapping in expired_urls:
        logger.debug(f"Deactivating expired URL: {url_mapping.short_url}")
        url_mapping.is_active = False

    db.commit()
    cache.delete_redirect_cache(*[url_mapping.short_url for url_mapping in expired_urls])
    logger.info(f"Deactivated {len(expired_urls)} expired URLs")
    return len(expired_urls)


def cleanup_old_urls(db: Session, months: int = OLD_URL_MAX_AGE_MONTHS) -> int:
    """Удаление ссылок старше заданного числа месяцев, активных и неактивных"""
    cutoff_date = subtract_months(datetime.now(), months)
    old_urls = db.query(models.UrlMapping).filter(
        models.UrlMapping.created_date < cutoff_date
    ).all()

    short_urls = [url_mapping.short_url for url_mapping in old_urls]
    for url_mapping in old_urls:
        db.delete(url_mapping)

    db.commit()
    cache.delete_redirect_cache(*short_urls)
    logger.info(f"Deleted {len(short_urls)} URLs created before {cutoff_date.isoformat()}")
    return len(short_urls)


def delete_url(db: Session, url_id: int, owner: models.User) -> bool:
    """Удаление ссылки владельцем; чужие и несуществующие ссылки не трогаются"""
    url_mapping = db.query(models.UrlMapping).filter(
        models.UrlMapping.id == url_id,
        models.UrlMapping.user_id == owner.id
    ).first()

    if not url_mapping:
        logger.warning(f"URL {url_id} not found for user {owner.username}")
        return False

    short_url = url_mapping.short_url
    db.delete(url_mapping)
    db.commit()
    cache.delete_redirect_cache(short_url)
    logger.info(f"Deleted URL {short_url} (id: {url_id})")
    return True


def delete_all_urls_by_user(db: Session, owner: models.User) -> int:
    """Удаляет все ссылки пользователя вместе с кликами и доступами устройств; коммит за вызывающим"""
    url_mappings = list(owner.url_mappings)
    for url_mapping in url_mappings:
        owner.url_mappings.remove(url_mapping)
        db.delete(url_mapping)
    db.flush()
    cache.delete_redirect_cache(*[url_mapping.short_url for url_mapping in url_mappings])
    return len(url_mappings)
