import base64
import hashlib
import logging
import os
import traceback
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Dict, List, Any

from fastapi import FastAPI, Depends, HTTPException, Query, Request
from fastapi.responses import RedirectResponse, JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from sqlalchemy import text

from . import models, schemas, auth, cache, url_service, user_service
from .config import SCHEDULER_ENABLED, DELETION_GRACE_PERIOD_DAYS
from .database import engine, get_db
from .exceptions import ShortlyError, VerificationTokenExpired, EmailAlreadyVerified, InvalidVerificationToken
from .scheduler import create_scheduler

# Настройка логирования
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

# Настройки CORS
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Запуск: создание таблиц, проверка БД и Redis, старт планировщика очистки
    """
    logger.info("Application startup")
    models.Base.metadata.create_all(bind=engine)

    try:
        with engine.connect() as connection:
            result = connection.execute(text("SELECT 1")).fetchone()
            logger.info(f"Database connection successful: {result}")
    except Exception as e:
        logger.error(f"Database connection failed: {str(e)}")
        logger.error(traceback.format_exc())

    if cache.ping():
        logger.info("Redis connection successful")
    else:
        logger.warning("Redis is unavailable. Application will continue without redirect caching")

    scheduler = None
    if SCHEDULER_ENABLED:
        scheduler = create_scheduler()
        scheduler.start()
        logger.info("Cleanup scheduler started")

    yield

    if scheduler is not None:
        scheduler.shutdown(wait=False)
        logger.info("Cleanup scheduler stopped")


app = FastAPI(
    title="Shortly",
    description="URL shortener with one-time and expiring links, click analytics and account management",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)


# Middleware для обработки исключений
@app.middleware("http")
async def log_exceptions(request: Request, call_next) -> JSONResponse:
    try:
        return await call_next(request)
    except Exception as e:
        logger.error(f"Unhandled exception: {str(e)}")
        logger.error(traceback.format_exc())

        # Не раскрываем детали ошибки в production
        error_detail = str(e) if os.getenv("ENVIRONMENT") == "development" else "Internal Server Error"

        return JSONResponse(
            status_code=500,
            content={"detail": "Internal Server Error", "error": error_detail}
        )


@app.exception_handler(ShortlyError)
async def shortly_error_handler(request: Request, exc: ShortlyError) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(status_code=400, content={"message": exc.message})


def get_client_ip(request: Request) -> str:
    x_forwarded_for = request.headers.get("X-Forwarded-For")
    if x_forwarded_for:
        return x_forwarded_for.split(",")[0].strip()
    x_real_ip = request.headers.get("X-Real-IP")
    if x_real_ip:
        return x_real_ip
    return request.client.host if request.client else ""


def generate_device_fingerprint(request: Request) -> str:
    """
    Отпечаток устройства: SHA-256 от "IP|User-Agent" в base64
    """
    user_agent = request.headers.get("User-Agent") or ""
    combined = f"{get_client_ip(request)}|{user_agent}"
    digest = hashlib.sha256(combined.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


def parse_iso_datetime(value: str, field: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError as e:
        logger.error(f"Error parsing {field}: {str(e)}")
        raise HTTPException(status_code=400, detail=f"Invalid {field} format: {value}")


def parse_iso_date(value: str, field: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        logger.error(f"Error parsing {field}: {str(e)}")
        raise HTTPException(status_code=400, detail=f"Invalid {field} format: {value}")


@app.get("/")
async def root() -> Dict[str, str]:
    """
    Root endpoint
    """
    return {"message": "Welcome to Shortly. Go to /docs for documentation."}


@app.get("/healthz")
async def health_check() -> JSONResponse:
    """
    Эндпоинт для проверки работоспособности сервиса
    """
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1")).fetchone()
        db_status = "healthy"
    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}")
        db_status = "unhealthy"

    redis_status = "healthy" if cache.ping() else "unhealthy"

    is_healthy = db_status == "healthy"
    return JSONResponse(
        content={
            "status": "healthy" if is_healthy else "unhealthy",
            "database": db_status,
            "redis": redis_status
        },
        status_code=200 if is_healthy else 503
    )


# Публичные эндпоинты аутентификации
@app.post("/api/auth/public/register", response_model=schemas.RegistrationResponse)
def register_user(request: schemas.RegistrationRequest, db: Session = Depends(get_db)) -> Dict[str, str]:
    """
    Регистрация пользователя; письмо для подтверждения email отправляется сразу
    """
    user = user_service.register_user(db, request.username, request.password, request.email)
    return {
        "message": "Registration successful! Please check your email to verify your account.",
        "email": user.email
    }


@app.post("/api/auth/public/login", response_model=schemas.Token)
def login_user(request: schemas.LoginRequest, db: Session = Depends(get_db)) -> Dict[str, str]:
    """
    Вход; возвращает JWT, если пароль верный и email подтвержден
    """
    return user_service.authenticate_user(db, request.username, request.password)


@app.get("/api/auth/public/verify-email")
def verify_email(token: str, db: Session = Depends(get_db)) -> JSONResponse:
    """
    Подтверждение email по токену из письма
    """
    try:
        user_service.verify_email(db, token)
    except ShortlyError as e:
        return JSONResponse(
            status_code=400,
            content={
                "message": e.message,
                "verified": False,
                "expired": isinstance(e, VerificationTokenExpired),
                # Токен очищается после подтверждения, поэтому повторный переход по ссылке попадает сюда
                "alreadyVerified": isinstance(e, (EmailAlreadyVerified, InvalidVerificationToken))
            }
        )
    return JSONResponse(content={"message": "Email verified successfully! You can now login.", "verified": True})


@app.post("/api/auth/public/resend-verification")
def resend_verification_email(
    request: schemas.ResendVerificationRequest,
    db: Session = Depends(get_db)
) -> JSONResponse:
    """
    Повторная отправка письма с новым токеном
    """
    if not request.email:
        return JSONResponse(status_code=400, content={"message": "Email is required"})
    user_service.resend_verification_email(db, request.email)
    return JSONResponse(content={"message": "Verification email sent successfully! Please check your inbox."})


# Защищенные эндпоинты аккаунта
@app.get("/api/auth/profile", response_model=schemas.UserProfile)
def get_user_profile(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_active_user)
) -> schemas.UserProfile:
    return user_service.get_user_profile(db, current_user.username)


@app.post("/api/auth/account/schedule-deletion")
def schedule_account_deletion(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_active_user)
) -> Dict[str, Any]:
    """
    Мягкое удаление аккаунта с периодом ожидания
    """
    user_service.schedule_account_deletion(db, current_user.username)
    return {
        "message": f"Account scheduled for deletion. You have {DELETION_GRACE_PERIOD_DAYS} days to cancel this action.",
        "gracePeriodDays": DELETION_GRACE_PERIOD_DAYS
    }


@app.post("/api/auth/account/cancel-deletion")
def cancel_account_deletion(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_active_user)
) -> Dict[str, str]:
    user_service.cancel_account_deletion(db, current_user.username)
    return {"message": "Account deletion cancelled. Your account has been recovered."}


@app.delete("/api/auth/account")
def delete_user_account(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_active_user)
) -> Dict[str, str]:
    """
    Немедленное удаление аккаунта без периода ожидания
    """
    user_service.delete_user_account(db, current_user.username)
    return {"message": "Account deleted successfully"}


# Эндпоинты ссылок
@app.post("/api/urls/shorten", response_model=schemas.UrlMappingResponse)
def create_short_url(
    request: schemas.CreateUrlRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_active_user)
) -> schemas.UrlMappingResponse:
    """
    Создание короткой ссылки (обычной, одноразовой или с ограниченным сроком действия)
    """
    logger.debug(f"Received request to shorten: {request.original_url}")
    return url_service.create_short_url_with_request(db, request, current_user)


@app.get("/api/urls/myurls", response_model=List[schemas.UrlMappingResponse])
def get_user_urls(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_active_user)
) -> List[schemas.UrlMappingResponse]:
    return url_service.get_urls_by_user(db, current_user)


@app.delete("/api/urls/{url_id}")
def delete_url(
    url_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_active_user)
) -> JSONResponse:
    if url_service.delete_url(db, url_id, current_user):
        return JSONResponse(content={"message": "URL deleted successfully"})
    return JSONResponse(
        status_code=400,
        content={"error": "URL not found or you don't have permission to delete it"}
    )


@app.get("/api/urls/analytics/{short_url}", response_model=List[schemas.ClickEventResponse])
def get_url_analytics(
    short_url: str,
    start_date: str = Query(..., alias="startDate"),
    end_date: str = Query(..., alias="endDate"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_active_user)
) -> List[schemas.ClickEventResponse]:
    """
    Клики по дням для одной ссылки; даты в формате ISO (2024-01-31T00:00:00)
    """
    start = parse_iso_datetime(start_date, "startDate")
    end = parse_iso_datetime(end_date, "endDate")

    click_events = url_service.get_click_events_by_date(db, short_url, start, end, owner=current_user)
    if click_events is None:
        raise HTTPException(status_code=404, detail="URL not found")
    return click_events


@app.get("/api/urls/totalClicks")
def get_total_clicks_by_date(
    start_date: str = Query(..., alias="startDate"),
    end_date: str = Query(..., alias="endDate"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_active_user)
) -> Dict[str, int]:
    """
    Суммарные клики по всем ссылкам пользователя по дням; даты в формате ISO (2024-01-31)
    """
    start = parse_iso_date(start_date, "startDate")
    end = parse_iso_date(end_date, "endDate")

    total_clicks = url_service.get_total_clicks_by_user_and_date(db, current_user, start, end)
    return {click_day.isoformat(): count for click_day, count in total_clicks.items()}


# Перенаправление по короткой ссылке (должно быть ПОСЛЕ всех специфичных маршрутов)
@app.get("/{short_url}")
def redirect(short_url: str, request: Request, db: Session = Depends(get_db)) -> RedirectResponse:
    """
    Перенаправление по короткой ссылке: 302 на исходный адрес или 404
    """
    device_fingerprint = generate_device_fingerprint(request)

    original_url = url_service.get_redirect_url(db, short_url, device_fingerprint)
    if original_url is None:
        raise HTTPException(status_code=404, detail="Link not found")

    logger.debug(f"Redirecting {short_url} to: {original_url}")
    return RedirectResponse(url=original_url, status_code=302)
