from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from common.models import EmotionCookie, SyncSnapshot, User, VipLevel

SNAPSHOT_KEYS = (
    "emotion_cookies",
    "cookie_goals",
    "user_info",
    "enrichment_data",
    "skill_tree_data",
    "diary_prompt_custom",
    "user_vip",
    "counselor_diary",
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def months_ago(now: datetime, months: int) -> datetime:
    # Calendar months, clamped to the last day of the target month.
    month_index = now.year * 12 + (now.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = now.day
    while day > 28:
        try:
            return now.replace(year=year, month=month, day=day)
        except ValueError:
            day -= 1
    return now.replace(year=year, month=month, day=day)


def sanitize_snapshot(body: Dict[str, Any]) -> Dict[str, Any]:
    return {key: body[key] for key in SNAPSHOT_KEYS if key in body and body[key] is not None}


async def find_user_by_open_id(db: AsyncSession, wx_open_id: str) -> Optional[User]:
    stmt = select(User).where(User.wx_open_id == wx_open_id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_user(db: AsyncSession, user_id: int) -> Optional[User]:
    stmt = select(User).where(User.id == user_id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def create_user(db: AsyncSession, wx_open_id: str, phone: Optional[str] = None) -> User:
    now = utc_now()
    user = User(
        wx_open_id=wx_open_id,
        phone=phone,
        vip_level=VipLevel.free.value,
        settings={},
        created_at=now,
        updated_at=now,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def update_user_phone(db: AsyncSession, user: User, phone: str) -> User:
    user.phone = phone
    user.updated_at = utc_now()
    await db.commit()
    await db.refresh(user)
    return user


async def upsert_emotion_day(db: AsyncSession, user_id: int, date: str, data: Dict[str, Any]) -> EmotionCookie:
    stmt = select(EmotionCookie).where(
        EmotionCookie.user_id == user_id,
        EmotionCookie.date == date,
        EmotionCookie.is_deleted.is_(False),
    )
    row = (await db.execute(stmt)).scalars().first()
    now = utc_now()
    if row is not None:
        row.data = data
        row.updated_at = now
    else:
        row = EmotionCookie(user_id=user_id, date=date, data=data, created_at=now, updated_at=now, is_deleted=False)
        db.add(row)
    await db.commit()
    await db.refresh(row)
    return row


async def list_emotion_days_within_months(db: AsyncSession, user_id: int, months: int) -> List[EmotionCookie]:
    since = months_ago(utc_now(), months)
    stmt = (
        select(EmotionCookie)
        .where(
            EmotionCookie.user_id == user_id,
            EmotionCookie.is_deleted.is_(False),
            EmotionCookie.created_at >= since,
        )
        .order_by(EmotionCookie.date.desc())
    )
    return list((await db.execute(stmt)).scalars().all())


async def get_sync_snapshot(db: AsyncSession, user_id: int) -> Optional[SyncSnapshot]:
    stmt = select(SyncSnapshot).where(SyncSnapshot.user_id == user_id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def set_sync_snapshot(db: AsyncSession, user_id: int, data: Dict[str, Any]) -> datetime:
    row = await get_sync_snapshot(db, user_id)
    now = utc_now()
    if row is not None:
        row.data = data
        row.updated_at = now
    else:
        db.add(SyncSnapshot(user_id=user_id, data=data, updated_at=now))
    await db.commit()
    return now
