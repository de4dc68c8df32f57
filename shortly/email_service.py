"""
Отправка писем через Mailjet HTTP API

SMTP-порты на хостинге закрыты, поэтому письма уходят через HTTPS:
1. user_service вызывает send_verification_email() после регистрации
2. Здесь собирается HTML-письмо со ссылкой подтверждения
3. Письмо отправляется POST-запросом на Mailjet v3.1 /send
4. Пользователь переходит по ссылке и подтверждает email
"""
import logging
import requests

from .config import (
    MAILJET_API_KEY,
    MAILJET_SECRET_KEY,
    MAILJET_SENDER_EMAIL,
    MAILJET_SENDER_NAME,
    MAILJET_API_URL,
    EMAIL_TIMEOUT_SECONDS,
    FRONTEND_URL,
    VERIFICATION_TOKEN_TTL_DAYS,
)
from .exceptions import EmailDeliveryError

logger = logging.getLogger(__name__)


def build_verification_link(token: str) -> str:
    return f"{FRONTEND_URL}/verify-email?token={token}"


def build_verification_email_html(username: str, verification_link: str) -> str:
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Verify Your Email</title>
</head>
<body style="margin: 0; padding: 0; font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif; background-color: #f4f4f9;">
    <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
        <div style="background: #667eea; border-radius: 16px 16px 0 0; padding: 40px 30px; text-align: center;">
            <h1 style="color: #ffffff; margin: 0; font-size: 28px;">{MAILJET_SENDER_NAME}</h1>
            <p style="color: #e8e8ff; margin-top: 10px; font-size: 16px;">URL Shortener &amp; Analytics Platform</p>
        </div>
        <div style="background-color: #ffffff; padding: 40px 30px; border-radius: 0 0 16px 16px;">
            <h2 style="color: #333333; margin: 0 0 20px 0; font-size: 24px;">Welcome, {username}!</h2>
            <p style="color: #666666; font-size: 16px; line-height: 1.6;">
                Thank you for registering! Please verify your email address by clicking the button below.
            </p>
            <div style="text-align: center; margin: 30px 0;">
                <a href="{verification_link}" style="display: inline-block; background: #667eea; color: #ffffff; text-decoration: none; padding: 16px 40px; border-radius: 50px; font-size: 16px;">
                    Verify My Email
                </a>
            </div>
            <p style="color: #999999; font-size: 14px;">If the button doesn't work, copy and paste this link into your browser:</p>
            <p style="color: #667eea; font-size: 14px; word-break: break-all;">{verification_link}</p>
            <p style="color: #999999; font-size: 13px; margin-top: 30px;">
                This verification link will expire in <strong>{VERIFICATION_TOKEN_TTL_DAYS} days</strong>.
                If you didn't create an account, you can safely ignore this email.
            </p>
        </div>
    </div>
</body>
</html>
"""


def send_verification_email(to: str, username: str, verification_link: str) -> None:
    """
    Отправка письма со ссылкой подтверждения

    Args:
        to: Email получателя
        username: Имя пользователя для приветствия
        verification_link: Полная ссылка с токеном

    Raises:
        EmailDeliveryError: Если Mailjet недоступен или вернул не 200
    """
    payload = {
        "Messages": [
            {
                "From": {"Email": MAILJET_SENDER_EMAIL, "Name": MAILJET_SENDER_NAME},
                "To": [{"Email": to, "Name": username}],
                "Subject": f"Verify Your Email - {MAILJET_SENDER_NAME}",
                "HTMLPart": build_verification_email_html(username, verification_link),
            }
        ]
    }

    try:
        response = requests.post(
            MAILJET_API_URL,
            json=payload,
            auth=(MAILJET_API_KEY, MAILJET_SECRET_KEY),
            timeout=EMAIL_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        logger.error(f"Failed to send verification email to {to}: {str(e)}")
        raise EmailDeliveryError() from e

    if response.status_code != 200:
        logger.error(f"Mailjet API error - Status: {response.status_code}, Data: {response.text}")
        raise EmailDeliveryError()

    logger.info(f"Verification email sent successfully to: {to} (Status: {response.status_code})")


def resend_verification_email(to: str, username: str, verification_link: str) -> None:
    send_verification_email(to, username, verification_link)
    logger.info(f"Verification email resent to: {to}")
