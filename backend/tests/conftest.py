"""Stable shared fixtures for tests.

Design goal: avoid async fixture loop injection and keep test boundaries explicit.
"""
import os
from unittest.mock import AsyncMock

import pytest

# Must be set before importing app modules.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["APP_ENV"] = "test"
os.environ["JWT_SECRET"] = "test_jwt_secret_for_the_cookie_house_suite"
os.environ["WECHAT_APPID"] = "wx_test_app"
os.environ["WECHAT_SECRET"] = "wx_test_secret"
os.environ["APP_TIMEZONE"] = "Asia/Shanghai"
os.environ["LLM_API_BASE_URL"] = "https://llm.test"

from api.main import app, get_db


@pytest.fixture
def mock_db():
    db = AsyncMock()
    db.commit = AsyncMock(return_value=None)
    return db


@pytest.fixture
def app_no_db(mock_db):
    async def _stub_get_db():
        yield mock_db

    app.dependency_overrides[get_db] = _stub_get_db
    yield app
    app.dependency_overrides.clear()
