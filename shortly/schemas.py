from pydantic import BaseModel, HttpUrl, EmailStr, Field
from typing import Optional, Annotated
from datetime import date, datetime

# Модели для пользователей
class UserBase(BaseModel):
    username: Annotated[str, Field(min_length=3, max_length=50)]
    email: EmailStr

class RegistrationRequest(UserBase):
    password: Annotated[str, Field(min_length=8)]

class RegistrationResponse(BaseModel):
    message: str
    email: EmailStr

class LoginRequest(BaseModel):
    username: str
    password: str

class ResendVerificationRequest(BaseModel):
    # Отсутствие email обрабатывается вручную, чтобы вернуть 400 вместо 422
    email: Optional[str] = None

class UserProfile(BaseModel):
    id: int
    username: str
    email: str
    role: str
    email_verified: bool = Field(alias="emailVerified")
    is_deleted: bool = Field(alias="isDeleted")
    deletion_scheduled_at: Optional[datetime] = Field(default=None, alias="deletionScheduledAt")
    deletion_date: Optional[datetime] = Field(default=None, alias="deletionDate")

    model_config = {"from_attributes": True, "populate_by_name": True}

# Модели для токенов
class Token(BaseModel):
    token: str
    token_type: str = Field(default="bearer", alias="tokenType")
    username: str
    email: str

    model_config = {"populate_by_name": True}

class TokenData(BaseModel):
    username: Optional[str] = None

# Модели для ссылок
class CreateUrlRequest(BaseModel):
    original_url: HttpUrl = Field(alias="originalUrl")
    is_one_time_url: bool = Field(default=False, alias="isOneTimeUrl")
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")
    # Альтернатива expiresAt: срок жизни в часах от момента создания
    expires_in_hours: Optional[Annotated[int, Field(ge=1)]] = Field(default=None, alias="expiresInHours")

    model_config = {"populate_by_name": True}

class UrlMappingResponse(BaseModel):
    id: int
    original_url: str = Field(alias="originalUrl")
    short_url: str = Field(alias="shortUrl")
    click_count: int = Field(alias="clickCount")
    created_date: datetime = Field(alias="createdDate")
    username: str
    is_one_time_url: bool = Field(alias="isOneTimeUrl")
    is_used: bool = Field(alias="isUsed")
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")
    is_active: bool = Field(alias="isActive")

    model_config = {"populate_by_name": True}

class ClickEventResponse(BaseModel):
    click_date: date = Field(alias="clickDate")
    count: int

    model_config = {"populate_by_name": True}
