from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime

from .database import Base

class User(Base):
    __tablename__ = "users"
    __allow_unmapped__ = True

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    username = Column(String(50), unique=True, index=True, nullable=False)
    hashed_password = Column(String(100), nullable=False)
    role = Column(String(20), default="ROLE_USER", nullable=False)

    # Подтверждение email
    email_verified = Column(Boolean, default=False, nullable=False)
    verification_token = Column(String(64), unique=True, index=True, nullable=True)
    verification_token_expiry = Column(DateTime, nullable=True)

    # Мягкое удаление с периодом ожидания
    is_deleted = Column(Boolean, default=False, nullable=False)
    deletion_scheduled_at = Column(DateTime, nullable=True)
    deletion_date = Column(DateTime, nullable=True)

    url_mappings = relationship(
        "UrlMapping",
        back_populates="user",
        cascade="all, delete-orphan",
    )

class UrlMapping(Base):
    __tablename__ = "url_mappings"
    __allow_unmapped__ = True

    id = Column(Integer, primary_key=True, index=True)
    original_url = Column(String(2048), nullable=False)
    short_url = Column(String(20), unique=True, index=True, nullable=False)
    click_count = Column(Integer, default=0, nullable=False)
    created_date = Column(DateTime, default=datetime.now, nullable=False)
    is_one_time_url = Column(Boolean, default=False, nullable=False)
    is_used = Column(Boolean, default=False, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    user = relationship("User", back_populates="url_mappings")
    click_events = relationship(
        "ClickEvent",
        back_populates="url_mapping",
        cascade="all, delete-orphan",
    )
    device_accesses = relationship(
        "DeviceAccess",
        back_populates="url_mapping",
        cascade="all, delete-orphan",
    )

class ClickEvent(Base):
    __tablename__ = "click_events"
    __allow_unmapped__ = True

    id = Column(Integer, primary_key=True, index=True)
    click_date = Column(DateTime, default=datetime.now, nullable=False, index=True)
    url_mapping_id = Column(Integer, ForeignKey("url_mappings.id", ondelete="CASCADE"), nullable=False, index=True)

    url_mapping = relationship("UrlMapping", back_populates="click_events")

class DeviceAccess(Base):
    __tablename__ = "device_accesses"
    __allow_unmapped__ = True
    __table_args__ = (
        UniqueConstraint("url_mapping_id", "device_fingerprint", name="uq_device_access_mapping_fingerprint"),
    )

    id = Column(Integer, primary_key=True, index=True)
    # SHA-256 от IP + User-Agent в base64
    device_fingerprint = Column(String(64), nullable=False)
    accessed_at = Column(DateTime, default=datetime.now, nullable=False)
    url_mapping_id = Column(Integer, ForeignKey("url_mappings.id", ondelete="CASCADE"), nullable=False, index=True)

    url_mapping = relationship("UrlMapping", back_populates="device_accesses")
