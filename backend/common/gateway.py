import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from common.completion import CompletionClient, completion_client
from common.config import settings
from common.errors import GatewayError, UpstreamError, ValidationError
from common.extraction import extract
from common.prompts import (
    COUNSELOR_DIARY,
    DAILY_SUMMARY,
    GOAL_SPLIT,
    LONG_TERM,
    PromptCatalog,
    PromptSpec,
    prompt_catalog,
)

logger = logging.getLogger(__name__)

MISSING_API_KEY_MESSAGE = "缺少 apiKey，请在前端填写 AI 助手密钥"
NOTHING_TO_ANALYZE_MESSAGE = "没有可分析的内容"
DEFAULT_ENTRY_TYPE = "碎碎念"

TASK_FAILURE_MESSAGES = {
    DAILY_SUMMARY: "AI 分析失败",
    "diary": "AI 日记生成失败",
    COUNSELOR_DIARY: "AI 心理日记生成失败",
    LONG_TERM: "AI 长期分析失败",
    GOAL_SPLIT: "目标拆解失败",
    "fortune": "AI 生成失败",
}

_STEP_MARKER_RE = re.compile(r"^(?:[\d\s.\-)）、．:：•·]|\*(?!\*))+")


def _timezone():
    try:
        return ZoneInfo((settings.APP_TIMEZONE or "").strip() or "UTC")
    except ZoneInfoNotFoundError:
        return timezone.utc


def _timestamp(entry: Dict[str, Any]) -> float:
    value = entry.get("timestamp")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return 0.0


def format_entry_time(timestamp: Any) -> Optional[str]:
    """Renders a millisecond epoch timestamp as local ``HH:MM``."""
    if not isinstance(timestamp, (int, float)) or isinstance(timestamp, bool) or not timestamp:
        return None
    try:
        moment = datetime.fromtimestamp(timestamp / 1000, tz=_timezone())
    except (OverflowError, OSError, ValueError):
        return None
    return moment.strftime("%H:%M")


def order_entries(entries: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # sorted() is stable: equal timestamps keep their input order.
    return sorted(entries, key=_timestamp)


def serialize_entries(entries: Sequence[Dict[str, Any]]) -> str:
    payload = [
        {
            "index": idx + 1,
            "text": entry.get("text"),
            "type": entry.get("type"),
            "time": format_entry_time(entry.get("timestamp")),
        }
        for idx, entry in enumerate(order_entries(entries))
    ]
    return json.dumps(payload, ensure_ascii=False, indent=2)


def flatten_folders(folders: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    flattened = []
    for folder in folders:
        date_label = folder.get("date") or ""
        for entry in folder.get("entries") or []:
            flattened.append((date_label, _timestamp(entry), {
                "date": date_label,
                "text": entry.get("text"),
                "type": entry.get("type") or DEFAULT_ENTRY_TYPE,
                "time": format_entry_time(entry.get("timestamp")),
            }))
    flattened.sort(key=lambda item: (item[0], item[1]))
    return [item[2] for item in flattened]


def split_steps(text: str) -> List[str]:
    steps = []
    for line in (text or "").splitlines():
        line = line.strip()
        if not line:
            continue
        line = _STEP_MARKER_RE.sub("", line).strip()
        if line:
            steps.append(line)
    return steps


def _require_api_key(api_key: Optional[str]) -> str:
    if not isinstance(api_key, str) or not api_key.strip():
        raise ValidationError(MISSING_API_KEY_MESSAGE)
    return api_key.strip()


def _non_empty(value: Any) -> bool:
    if isinstance(value, (list, dict)):
        return len(value) > 0
    return False


class AnalysisGateway:
    """Runs one logical task: prompt selection, one completion call, shaping."""

    def __init__(self, client: Optional[CompletionClient] = None, catalog: Optional[PromptCatalog] = None):
        self.client = client or completion_client
        self.catalog = catalog or prompt_catalog

    async def _complete(self, task: str, api_key: str, spec: PromptSpec, user_content: str) -> str:
        try:
            return await self.client.complete(api_key, spec.render(), user_content, spec.timeout_seconds)
        except GatewayError as exc:
            exc.task = task
            logger.error("Gateway task %s failed: %s (%s)", task, type(exc).__name__, exc.message)
            raise
        except Exception as exc:
            logger.exception("Gateway task %s failed unexpectedly", task)
            raise UpstreamError(TASK_FAILURE_MESSAGES.get(task), task=task) from exc

    async def daily_summary(self, api_key: Optional[str], entries: Optional[List[Dict[str, Any]]]) -> Dict[str, Any]:
        api_key = _require_api_key(api_key)
        if not entries:
            raise ValidationError(NOTHING_TO_ANALYZE_MESSAGE)
        spec = self.catalog.get(DAILY_SUMMARY)
        analysis = await self._complete(DAILY_SUMMARY, api_key, spec, serialize_entries(entries))
        return {"analysis": analysis}

    async def generate_diary(
        self,
        api_key: Optional[str],
        entries: Optional[List[Dict[str, Any]]],
        custom_prompt: Optional[str] = None,
    ) -> Dict[str, Any]:
        api_key = _require_api_key(api_key)
        if not entries:
            raise ValidationError(NOTHING_TO_ANALYZE_MESSAGE)
        spec = self.catalog.diary(custom_prompt)
        raw = await self._complete("diary", api_key, spec, serialize_entries(entries))
        return extract(raw, spec.expected_shape)

    async def counselor_diary(self, api_key: Optional[str], folders: Optional[List[Dict[str, Any]]]) -> Dict[str, Any]:
        api_key = _require_api_key(api_key)
        if not folders:
            raise ValidationError(NOTHING_TO_ANALYZE_MESSAGE)
        all_entries = flatten_folders(folders)
        if not all_entries:
            raise ValidationError(NOTHING_TO_ANALYZE_MESSAGE)
        spec = self.catalog.get(COUNSELOR_DIARY)
        user_content = json.dumps(all_entries, ensure_ascii=False, indent=2)
        diary = await self._complete(COUNSELOR_DIARY, api_key, spec, user_content)
        return {"diary": diary}

    async def long_term_report(
        self,
        api_key: Optional[str],
        folders: Optional[List[Dict[str, Any]]] = None,
        enrichment: Optional[Dict[str, Any]] = None,
        skill_tree: Optional[Dict[str, Any]] = None,
        date_range: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        api_key = _require_api_key(api_key)
        if not (_non_empty(folders) or _non_empty(enrichment) or _non_empty(skill_tree)):
            raise ValidationError("没有可分析的长期数据")
        spec = self.catalog.get(LONG_TERM)
        payload = {
            "range": date_range or None,
            "folders": folders or [],
            "enrichment": enrichment or {},
            "skillTree": skill_tree or {},
        }
        raw = await self._complete(LONG_TERM, api_key, spec, json.dumps(payload, ensure_ascii=False, indent=2))
        return extract(raw, spec.expected_shape)

    async def split_goal(self, api_key: Optional[str], title: Optional[str]) -> Dict[str, Any]:
        api_key = _require_api_key(api_key)
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("请提供要拆解的目标标题")
        spec = self.catalog.get(GOAL_SPLIT)
        steps_text = await self._complete(GOAL_SPLIT, api_key, spec, title)
        return {"steps": split_steps(steps_text)}

    async def generate_fortune(self, api_key: Optional[str], category: Optional[str] = None) -> Dict[str, Any]:
        api_key = _require_api_key(api_key)
        final_category = self.catalog.resolve_category(category)
        spec = self.catalog.fortune(final_category)
        user_content = f"请为「{final_category}」板块生成一条今日小任务。"
        content = await self._complete("fortune", api_key, spec, user_content)
        return {"content": content.strip(), "category": final_category}


gateway = AnalysisGateway()
