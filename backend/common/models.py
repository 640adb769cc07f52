from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

# --- Enums ---

class VipLevel(PyEnum):
    free = "free"
    vip = "vip"

# --- Models ---

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wx_open_id = Column(String, nullable=False, unique=True)
    phone = Column(String, nullable=True)
    vip_level = Column(String, nullable=False, default=VipLevel.free.value)
    settings = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    emotion_days = relationship("EmotionCookie", back_populates="user")
    goals = relationship("CookieGoal", back_populates="user")

    @property
    def is_vip(self) -> bool:
        return self.vip_level == VipLevel.vip.value

class EmotionCookie(Base):
    """One row per user and calendar day; ``data`` holds ``{entries, analysis}``."""
    __tablename__ = "emotion_cookies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    date = Column(String, nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    is_deleted = Column(Boolean, nullable=False, default=False)

    user = relationship("User", back_populates="emotion_days")

    __table_args__ = (
        Index("idx_emotion_cookies_user_date", "user_id", "date"),
    )

class CookieGoal(Base):
    __tablename__ = "cookie_goals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    title = Column(Text, nullable=False)
    steps = Column(JSON, nullable=False, default=list)
    candy_count = Column(Integer, nullable=False, default=0)
    is_completed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    user = relationship("User", back_populates="goals")

    __table_args__ = (
        Index("idx_cookie_goals_user", "user_id"),
    )

class SyncSnapshot(Base):
    __tablename__ = "sync_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", name="uq_sync_snapshots_user"),
    )
