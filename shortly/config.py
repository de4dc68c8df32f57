import os
from typing import Optional

# Базовые настройки
SECRET_KEY = os.getenv("SECRET_KEY", "YOUR_SECRET_KEY")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24)))

# Настройки базы данных
POSTGRES_USER = os.getenv("POSTGRES_USER", "postgres")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD", "password")
POSTGRES_DB = os.getenv("POSTGRES_DB", "shortly")
POSTGRES_HOST = os.getenv("POSTGRES_HOST", "localhost")
POSTGRES_PORT = os.getenv("POSTGRES_PORT", "5432")

# Настройки Redis
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_DB = int(os.getenv("REDIS_DB", "0"))

# Настройки почты (Mailjet HTTP API)
MAILJET_API_KEY = os.getenv("MAILJET_API_KEY", "")
MAILJET_SECRET_KEY = os.getenv("MAILJET_SECRET_KEY", "")
MAILJET_SENDER_EMAIL = os.getenv("MAILJET_SENDER_EMAIL", "no-reply@shortly.local")
MAILJET_SENDER_NAME = os.getenv("MAILJET_SENDER_NAME", "Shortly")
MAILJET_API_URL = os.getenv("MAILJET_API_URL", "https://api.mailjet.com/v3.1/send")
EMAIL_TIMEOUT_SECONDS = float(os.getenv("EMAIL_TIMEOUT_SECONDS", "10"))

# Адрес фронтенда для ссылки подтверждения email
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173").rstrip("/")

# Короткие ссылки
SHORT_CODE_LENGTH = 8
SHORT_CODE_MAX_RETRIES = int(os.getenv("SHORT_CODE_MAX_RETRIES", "10"))

# Сроки жизни
VERIFICATION_TOKEN_TTL_DAYS = 7
DELETION_GRACE_PERIOD_DAYS = 5
OLD_URL_MAX_AGE_MONTHS = int(os.getenv("OLD_URL_MAX_AGE_MONTHS", "3"))

# Флаг для определения режима тестирования
TESTING = os.getenv("TESTING", "False").lower() in ("true", "1", "t")

# Периодические задачи очистки не запускаются в тестах
SCHEDULER_ENABLED = (
    os.getenv("SCHEDULER_ENABLED", "True").lower() in ("true", "1", "t") and not TESTING
)

# URL для подключения к базе данных
DATABASE_URL_FROM_ENV: Optional[str] = os.getenv("DATABASE_URL")

if TESTING:
    DATABASE_URL = "sqlite:///./test.db"
elif DATABASE_URL_FROM_ENV:
    DATABASE_URL = DATABASE_URL_FROM_ENV
    # Render/Heroku отдают схему postgres://, SQLAlchemy ждет postgresql://
    if DATABASE_URL.startswith("postgres://"):
        DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)
else:
    DATABASE_URL = f"postgresql://{POSTGRES_USER}:{POSTGRES_PASSWORD}@{POSTGRES_HOST}:{POSTGRES_PORT}/{POSTGRES_DB}"
