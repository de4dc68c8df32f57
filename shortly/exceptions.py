class ShortlyError(Exception):
    """Базовая ошибка бизнес-логики; message показывается клиенту"""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UsernameAlreadyExists(ShortlyError):
    def __init__(self, username: str) -> None:
        super().__init__(f"Username already exists: {username}")


class EmailAlreadyExists(ShortlyError):
    def __init__(self, email: str) -> None:
        super().__init__(f"Email already exists: {email}")


class InvalidVerificationToken(ShortlyError):
    def __init__(self) -> None:
        super().__init__(
            "Invalid or already used verification token. "
            "If you've already verified your email, please login."
        )


class EmailAlreadyVerified(ShortlyError):
    def __init__(self) -> None:
        super().__init__("Email is already verified. Please login.")


class VerificationTokenExpired(ShortlyError):
    def __init__(self, email: str) -> None:
        super().__init__(
            "Verification token has expired. Please use the "
            f"'Resend Verification Email' option with email: {email}"
        )


class AccountNotFound(ShortlyError):
    def __init__(self) -> None:
        super().__init__("No account found with this email")


class UserNotFound(ShortlyError):
    def __init__(self, identifier: str) -> None:
        super().__init__(f"User not found: {identifier}")


class EmailNotVerified(ShortlyError):
    def __init__(self) -> None:
        super().__init__(
            "Please verify your email before logging in. "
            "Check your inbox for the verification link."
        )


class InvalidCredentials(ShortlyError):
    def __init__(self) -> None:
        super().__init__("Incorrect username or password")


class DeletionNotScheduled(ShortlyError):
    def __init__(self) -> None:
        super().__init__("Account is not scheduled for deletion")


class EmailDeliveryError(ShortlyError):
    def __init__(self) -> None:
        super().__init__("Failed to send verification email. Please try again.")


class ShortCodeGenerationError(ShortlyError):
    def __init__(self, attempts: int) -> None:
        super().__init__(f"Unable to generate a unique short URL after {attempts} attempts")
