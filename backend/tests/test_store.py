import asyncio
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from common import store
from common.models import Base


def _run_with_session(test_body):
    async def _run():
        engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        try:
            async with session_factory() as db:
                await test_body(db)
        finally:
            await engine.dispose()

    asyncio.run(_run())


def test_months_ago_clamps_to_month_end():
    assert store.months_ago(datetime(2024, 8, 31, tzinfo=timezone.utc), 6) == datetime(2024, 2, 29, tzinfo=timezone.utc)
    assert store.months_ago(datetime(2024, 3, 15), 1) == datetime(2024, 2, 15)
    assert store.months_ago(datetime(2024, 1, 10), 2) == datetime(2023, 11, 10)


def test_sanitize_snapshot_drops_unknown_and_null_keys():
    body = {"emotion_cookies": {}, "cookie_goals": None, "token": "x", "diary_prompt_custom": "写成诗"}
    assert store.sanitize_snapshot(body) == {"emotion_cookies": {}, "diary_prompt_custom": "写成诗"}


def test_user_lifecycle():
    async def _body(db):
        assert await store.find_user_by_open_id(db, "openid_a") is None
        user = await store.create_user(db, "openid_a")
        assert user.id is not None
        assert user.vip_level == "free"
        assert not user.is_vip

        found = await store.find_user_by_open_id(db, "openid_a")
        assert found.id == user.id
        assert (await store.get_user(db, user.id)).wx_open_id == "openid_a"

        updated = await store.update_user_phone(db, user, "13800000000")
        assert updated.phone == "13800000000"

    _run_with_session(_body)


def test_emotion_day_upsert_is_one_row_per_date():
    async def _body(db):
        user = await store.create_user(db, "openid_b")
        first = await store.upsert_emotion_day(db, user.id, "2024-03-01", {"entries": [], "analysis": None})
        second = await store.upsert_emotion_day(
            db, user.id, "2024-03-01", {"entries": [{"text": "a"}], "analysis": "ok"}
        )
        assert first.id == second.id
        await store.upsert_emotion_day(db, user.id, "2024-03-02", {"entries": [], "analysis": None})

        rows = await store.list_emotion_days_within_months(db, user.id, 6)
        assert [row.date for row in rows] == ["2024-03-02", "2024-03-01"]
        assert rows[1].data["analysis"] == "ok"

    _run_with_session(_body)


def test_emotion_days_outside_window_are_not_listed():
    async def _body(db):
        user = await store.create_user(db, "openid_c")
        old = await store.upsert_emotion_day(db, user.id, "2023-01-01", {"entries": []})
        old.created_at = datetime(2023, 1, 1, tzinfo=timezone.utc)
        await db.commit()
        await store.upsert_emotion_day(db, user.id, "2099-01-01", {"entries": []})

        rows = await store.list_emotion_days_within_months(db, user.id, 6)
        assert [row.date for row in rows] == ["2099-01-01"]

    _run_with_session(_body)


def test_sync_snapshot_is_replaced_wholesale():
    async def _body(db):
        user = await store.create_user(db, "openid_d")
        assert await store.get_sync_snapshot(db, user.id) is None

        await store.set_sync_snapshot(db, user.id, {"emotion_cookies": {"a": 1}, "cookie_goals": []})
        second_stamp = await store.set_sync_snapshot(db, user.id, {"user_info": {"name": "饼干"}})

        row = await store.get_sync_snapshot(db, user.id)
        assert row.data == {"user_info": {"name": "饼干"}}
        assert isinstance(second_stamp, datetime)

    _run_with_session(_body)
