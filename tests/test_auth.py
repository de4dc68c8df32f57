import pytest
from datetime import datetime, timedelta
from shortly import models, auth
from conftest import make_user, TEST_PASSWORD


def test_register_user(client, db, no_outgoing_email):
    """Тест регистрации пользователя"""
    response = client.post(
        "/api/auth/public/register",
        json={"username": "newuser", "email": "new@example.com", "password": "password123"}
    )
    assert response.status_code == 200
    data = response.json()
    assert data["email"] == "new@example.com"
    assert "verify" in data["message"]

    db_user = db.query(models.User).filter(models.User.username == "newuser").first()
    assert db_user is not None
    assert db_user.email_verified is False
    assert db_user.role == "ROLE_USER"
    assert db_user.verification_token is not None
    assert db_user.verification_token_expiry > datetime.now() + timedelta(days=6)

    # Письмо со ссылкой подтверждения ушло в Mailjet
    assert no_outgoing_email.call_count == 1
    payload = no_outgoing_email.call_args.kwargs["json"]
    assert db_user.verification_token in payload["Messages"][0]["HTMLPart"]


def test_register_invalid_data(client, db):
    """Тест регистрации с невалидными данными"""
    # Слишком короткий пароль
    response = client.post(
        "/api/auth/public/register",
        json={"username": "newuser", "email": "new@example.com", "password": "short"}
    )
    assert response.status_code == 422

    # Невалидный email
    response = client.post(
        "/api/auth/public/register",
        json={"username": "newuser", "email": "invalid-email", "password": "password123"}
    )
    assert response.status_code == 422


def test_register_duplicate_username(client, test_user):
    response = client.post(
        "/api/auth/public/register",
        json={"username": test_user.username, "email": "another@example.com", "password": "password123"}
    )
    assert response.status_code == 400
    assert response.json()["message"] == f"Username already exists: {test_user.username}"


def test_register_duplicate_email(client, test_user):
    response = client.post(
        "/api/auth/public/register",
        json={"username": "anotheruser", "email": test_user.email, "password": "password123"}
    )
    assert response.status_code == 400
    assert "Email already exists" in response.json()["message"]


def test_login(client, test_user):
    """Тест входа и формата токена"""
    response = client.post(
        "/api/auth/public/login",
        json={"username": test_user.username, "password": TEST_PASSWORD}
    )
    assert response.status_code == 200
    data = response.json()
    assert data["tokenType"] == "bearer"
    assert data["username"] == test_user.username
    assert data["email"] == test_user.email
    assert data["token"]


def test_login_wrong_password(client, test_user):
    response = client.post(
        "/api/auth/public/login",
        json={"username": test_user.username, "password": "wrongpassword"}
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Incorrect username or password"


def test_login_unknown_user(client, db):
    response = client.post(
        "/api/auth/public/login",
        json={"username": "ghost", "password": "password123"}
    )
    assert response.status_code == 400
    assert response.json()["message"] == "User not found: ghost"


def test_login_unverified_email(client, db):
    """Вход без подтверждения email запрещен даже с верным паролем"""
    make_user(db, "unverified", "unverified@example.com", verified=False)
    response = client.post(
        "/api/auth/public/login",
        json={"username": "unverified", "password": TEST_PASSWORD}
    )
    assert response.status_code == 400
    assert "verify your email" in response.json()["message"]


def test_verify_email_flow(client, db):
    """Регистрация, подтверждение по токену и вход"""
    client.post(
        "/api/auth/public/register",
        json={"username": "flowuser", "email": "flow@example.com", "password": "password123"}
    )
    user = db.query(models.User).filter(models.User.username == "flowuser").first()
    token = user.verification_token

    response = client.get(f"/api/auth/public/verify-email?token={token}")
    assert response.status_code == 200
    assert response.json()["verified"] is True

    db.refresh(user)
    assert user.email_verified is True
    assert user.verification_token is None
    assert user.verification_token_expiry is None

    # Повторный переход по той же ссылке сообщает, что email уже подтвержден
    response = client.get(f"/api/auth/public/verify-email?token={token}")
    assert response.status_code == 400
    data = response.json()
    assert data["verified"] is False
    assert data["expired"] is False
    assert data["alreadyVerified"] is True
    assert "already verified" in data["message"]

    response = client.post(
        "/api/auth/public/login",
        json={"username": "flowuser", "password": "password123"}
    )
    assert response.status_code == 200


def test_verify_email_expired_token(client, db):
    user = make_user(db, "lateuser", "late@example.com", verified=False)
    user.verification_token = "expired-token"
    user.verification_token_expiry = datetime.now() - timedelta(hours=1)
    db.commit()

    response = client.get("/api/auth/public/verify-email?token=expired-token")
    assert response.status_code == 400
    data = response.json()
    assert data["expired"] is True
    assert data["alreadyVerified"] is False
    assert "late@example.com" in data["message"]

    db.refresh(user)
    assert user.email_verified is False


def test_verify_email_already_verified(client, db):
    user = make_user(db, "doneuser", "done@example.com", verified=True)
    user.verification_token = "stale-token"
    user.verification_token_expiry = datetime.now() - timedelta(days=1)
    db.commit()

    response = client.get("/api/auth/public/verify-email?token=stale-token")
    assert response.status_code == 400
    data = response.json()
    # Подтвержденный email важнее истекшего срока
    assert data["alreadyVerified"] is True
    assert data["expired"] is False


def test_resend_verification(client, db, no_outgoing_email):
    user = make_user(db, "resenduser", "resend@example.com", verified=False)
    user.verification_token = "old-token"
    db.commit()

    response = client.post("/api/auth/public/resend-verification", json={"email": "resend@example.com"})
    assert response.status_code == 200

    db.refresh(user)
    assert user.verification_token != "old-token"
    assert user.verification_token_expiry > datetime.now()
    assert no_outgoing_email.call_count == 1


def test_resend_verification_errors(client, test_user):
    response = client.post("/api/auth/public/resend-verification", json={})
    assert response.status_code == 400
    assert response.json()["message"] == "Email is required"

    response = client.post("/api/auth/public/resend-verification", json={"email": "nobody@example.com"})
    assert response.status_code == 400
    assert response.json()["message"] == "No account found with this email"

    response = client.post("/api/auth/public/resend-verification", json={"email": test_user.email})
    assert response.status_code == 400
    assert response.json()["message"] == "Email is already verified. Please login."


def test_protected_endpoint_without_token(client, db):
    response = client.get("/api/urls/myurls")
    assert response.status_code == 401


def test_protected_endpoint_with_invalid_token(client, db):
    response = client.get(
        "/api/urls/myurls",
        headers={"Authorization": "Bearer invalid-token"}
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Could not validate credentials"


def test_token_of_unverified_user_rejected(client, db):
    user = make_user(db, "sneaky", "sneaky@example.com", verified=False)
    token = auth.create_access_token(data={"sub": user.username})
    response = client.get("/api/urls/myurls", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Email not verified"


def test_expired_access_token(client, test_user):
    token = auth.create_access_token(data={"sub": test_user.username}, expires_delta=timedelta(minutes=-1))
    response = client.get("/api/auth/profile", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_password_hashing():
    hashed = auth.get_password_hash("password123")
    assert hashed != "password123"
    assert auth.verify_password("password123", hashed)
    assert not auth.verify_password("password124", hashed)


def test_authenticate_user(db, test_user):
    assert auth.authenticate_user(db, test_user.username, TEST_PASSWORD).id == test_user.id
    assert auth.authenticate_user(db, test_user.username, "wrong") is None
    assert auth.authenticate_user(db, "ghost", TEST_PASSWORD) is None
