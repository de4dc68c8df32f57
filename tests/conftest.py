import pytest
import os
import sys
from datetime import datetime
from typing import Generator
from unittest.mock import patch
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.engine import Engine
from fastapi.testclient import TestClient

# Устанавливаем флаг тестирования
os.environ["TESTING"] = "True"

# Добавляем корневую директорию проекта в sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from shortly.database import Base, get_db
from shortly.main import app
from shortly import models, auth, cache

# Настройка тестовой базы данных
TEST_DATABASE_URL = "sqlite:///:memory:"

engine: Engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TEST_PASSWORD = "password123"


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Создает тестовую базу данных и возвращает сессию
    """
    Base.metadata.create_all(bind=engine)

    # Вся сессия работает внутри внешней транзакции, которая откатывается в конце теста
    connection = engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection)

    yield session

    session.close()
    transaction.rollback()
    connection.close()

    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_cache() -> Generator[None, None, None]:
    cache._memory_cache.clear()
    yield
    cache._memory_cache.clear()


@pytest.fixture(autouse=True)
def no_outgoing_email() -> Generator:
    """
    Письма не уходят в Mailjet во время тестов
    """
    with patch("shortly.email_service.requests.post") as mock_post:
        mock_post.return_value.status_code = 200
        mock_post.return_value.text = "{}"
        yield mock_post


@pytest.fixture
def client(db: Session) -> Generator[TestClient, None, None]:
    """
    Создает тестовый клиент с переопределенной зависимостью базы данных
    """
    def override_get_db() -> Generator[Session, None, None]:
        yield db

    app.dependency_overrides[get_db] = override_get_db

    test_client = TestClient(app)

    yield test_client

    app.dependency_overrides.clear()


def make_user(db: Session, username: str, email: str, verified: bool = True) -> models.User:
    user = models.User(
        username=username,
        email=email,
        hashed_password=auth.get_password_hash(TEST_PASSWORD),
        role="ROLE_USER",
        email_verified=verified,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_url(db: Session, owner: models.User, short_url: str, original_url: str = "https://example.com", **kwargs) -> models.UrlMapping:
    url_mapping = models.UrlMapping(
        short_url=short_url,
        original_url=original_url,
        user_id=owner.id,
        created_date=kwargs.pop("created_date", datetime.now()),
        **kwargs
    )
    db.add(url_mapping)
    db.commit()
    db.refresh(url_mapping)
    return url_mapping


@pytest.fixture
def test_user(db: Session) -> models.User:
    """
    Создает тестового пользователя с подтвержденным email
    """
    return make_user(db, "testuser", "test@example.com")


@pytest.fixture
def other_user(db: Session) -> models.User:
    return make_user(db, "otheruser", "other@example.com")


@pytest.fixture
def auth_token(client: TestClient, test_user: models.User) -> str:
    """
    Получает токен аутентификации для тестового пользователя
    """
    response = client.post(
        "/api/auth/public/login",
        json={"username": test_user.username, "password": TEST_PASSWORD}
    )
    return response.json()["token"]


@pytest.fixture
def auth_headers(auth_token: str) -> dict:
    return {"Authorization": f"Bearer {auth_token}"}
