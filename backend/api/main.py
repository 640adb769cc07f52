import logging
import os
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from common.auth import decode_session_token, issue_session_token
from common.config import settings
from common.errors import (
    AuthenticationError, ConfigurationError, GatewayError, PermissionDeniedError, ValidationError
)
from common.gateway import gateway
from common.models import Base, User
from common import store
from common.wechat import wechat_client
from api.schemas import (
    CodeRequest, CounselorDiaryRequest, DailyAnalysisRequest, DiaryRequest,
    EmotionDayRequest, EntryIn, FolderIn, FortuneRequest, GoalSplitRequest, LongTermRequest
)

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# DB Setup
engine = create_async_engine(settings.DATABASE_URL, echo=settings.APP_ENV == "dev")
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def _prepare_local_database() -> None:
    url = make_url(settings.DATABASE_URL)
    if not url.drivername.startswith("sqlite"):
        return
    if url.database and url.database != ":memory:":
        os.makedirs(os.path.dirname(os.path.abspath(url.database)), exist_ok=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    for key in settings.missing_secrets:
        logger.warning("%s is not set; login endpoints will be unavailable", key)
    await _prepare_local_database()
    yield
    await engine.dispose()


app = FastAPI(title="Emotion Cookie House API", lifespan=lifespan)


async def get_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()

# --- Middleware & Error Handling ---

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    if request.url.path.startswith("/api/"):
        client = request.client.host if request.client else "-"
        logger.info("%s %s <- %s [%s]", request.method, request.url.path, client, request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    return JSONResponse(status_code=exc.status_code, content={"code": exc.status_code, "message": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.info("Rejected malformed body for %s: %s", request.url.path, exc.errors()[:3])
    return JSONResponse(status_code=400, content={"code": 400, "message": ValidationError.default_message})


def ok(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"code": 0}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body

# --- Auth Dependencies ---

async def get_current_user(request: Request, db: AsyncSession = Depends(get_db)) -> User:
    auth_header = request.headers.get("Authorization") or ""
    if not auth_header.startswith("Bearer ") or not auth_header[7:].strip():
        raise AuthenticationError("未登录或 token 无效")
    payload = decode_session_token(auth_header[7:].strip())
    user = await store.get_user(db, payload["userId"])
    if user is None:
        raise AuthenticationError("用户不存在")
    return user


async def get_vip_user(user: User = Depends(get_current_user)) -> User:
    if not user.is_vip:
        raise PermissionDeniedError("仅 VIP 用户可使用云端存储")
    return user


def to_user_dto(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "wxOpenId": user.wx_open_id,
        "phone": user.phone,
        "vipLevel": user.vip_level,
        "settings": user.settings or {},
        "createdAt": user.created_at.isoformat() if user.created_at else None,
        "updatedAt": user.updated_at.isoformat() if user.updated_at else None,
    }


def _entries(entries: Optional[List[EntryIn]]) -> Optional[List[Dict[str, Any]]]:
    if entries is None:
        return None
    return [entry.model_dump() for entry in entries]


def _folders(folders: Optional[List[FolderIn]]) -> Optional[List[Dict[str, Any]]]:
    if folders is None:
        return None
    return [folder.model_dump(exclude_none=True) for folder in folders]

# --- Health ---

@app.get("/api/health")
async def health():
    return {"status": "ok", "message": "情绪饼干屋后端服务运行中"}

# --- Account ---

@app.post("/api/auth/login")
async def auth_login(payload: CodeRequest, db: AsyncSession = Depends(get_db)):
    if not payload.code or not payload.code.strip():
        raise ValidationError("请提供微信登录 code")
    if not (settings.JWT_SECRET or "").strip():
        raise ConfigurationError("服务端未配置 JWT")
    try:
        session = await wechat_client.code_to_session(payload.code.strip())
    except ConfigurationError:
        raise
    except GatewayError as exc:
        logger.warning("WeChat login rejected: %s", exc.message)
        raise AuthenticationError(exc.message)
    user = await store.find_user_by_open_id(db, session["openid"])
    if user is None:
        user = await store.create_user(db, session["openid"])
        logger.info("Registered user %s", user.id)
    token = issue_session_token(user.id, user.wx_open_id)
    return ok({"token": token, "user": to_user_dto(user)}, message="登录成功")


@app.get("/api/auth/me")
async def auth_me(user: User = Depends(get_current_user)):
    return ok({"user": to_user_dto(user)})


@app.post("/api/auth/phone")
async def auth_phone(payload: CodeRequest, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    if not payload.code or not payload.code.strip():
        raise ValidationError("请提供手机号授权 code")
    try:
        phone = await wechat_client.get_phone_number(payload.code.strip())
    except ConfigurationError:
        raise
    except GatewayError as exc:
        logger.warning("Phone number lookup failed for user %s: %s", user.id, exc.message)
        raise ValidationError(exc.message)
    user = await store.update_user_phone(db, user, phone["purePhoneNumber"])
    return ok({"user": to_user_dto(user)}, message="手机号已更新")

# --- Cloud storage (VIP) ---

@app.post("/api/emotion-cookies")
async def save_emotion_day(payload: EmotionDayRequest, user: User = Depends(get_vip_user), db: AsyncSession = Depends(get_db)):
    if not payload.date or not payload.date.strip():
        raise ValidationError("请提供日期 date")
    row = await store.upsert_emotion_day(
        db, user.id, payload.date.strip(), {"entries": payload.entries, "analysis": payload.analysis}
    )
    return ok({"id": row.id, "date": row.date}, message="已保存到云端")


@app.get("/api/emotion-cookies")
async def list_emotion_days(user: User = Depends(get_vip_user), db: AsyncSession = Depends(get_db)):
    rows = await store.list_emotion_days_within_months(db, user.id, 6)
    items = []
    for row in rows:
        data = row.data if isinstance(row.data, dict) else {}
        items.append({
            "id": row.id,
            "date": row.date,
            "entries": data.get("entries") or [],
            "analysis": data.get("analysis"),
            "createdAt": row.created_at.isoformat() if row.created_at else None,
            "updatedAt": row.updated_at.isoformat() if row.updated_at else None,
        })
    return ok({"items": items})

# --- Snapshot sync ---

@app.post("/api/sync/upload")
async def sync_upload(request: Request, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    try:
        body = await request.json()
    except ValueError:
        body = {}
    snapshot = store.sanitize_snapshot(body if isinstance(body, dict) else {})
    updated_at = await store.set_sync_snapshot(db, user.id, snapshot)
    return ok({"updatedAt": updated_at.isoformat()}, message="已备份到云端")


@app.get("/api/sync/download")
async def sync_download(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    row = await store.get_sync_snapshot(db, user.id)
    return ok({
        "snapshot": row.data if row is not None and isinstance(row.data, dict) else {},
        "updatedAt": row.updated_at.isoformat() if row is not None and row.updated_at else None,
    })

# --- AI gateway ---

@app.post("/api/analysis/daily")
async def analysis_daily(payload: DailyAnalysisRequest):
    return ok(await gateway.daily_summary(payload.apiKey, _entries(payload.entries)))


@app.post("/api/analysis/diary")
async def analysis_diary(payload: DiaryRequest):
    return ok(await gateway.generate_diary(payload.apiKey, _entries(payload.entries), payload.customPrompt))


@app.post("/api/analysis/counselor-diary")
async def analysis_counselor_diary(payload: CounselorDiaryRequest):
    return ok(await gateway.counselor_diary(payload.apiKey, _folders(payload.folders)))


@app.post("/api/analysis/long-term")
async def analysis_long_term(payload: LongTermRequest):
    data = await gateway.long_term_report(
        payload.apiKey,
        folders=_folders(payload.folders),
        enrichment=payload.enrichment,
        skill_tree=payload.skillTree,
        date_range=payload.range,
    )
    return ok(data)


@app.post("/api/goals/split")
async def goals_split(payload: GoalSplitRequest):
    return ok(await gateway.split_goal(payload.apiKey, payload.title))


@app.post("/api/fortune/generate")
async def fortune_generate(payload: FortuneRequest):
    return ok(await gateway.generate_fortune(payload.apiKey, payload.category))
