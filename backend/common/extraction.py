"""Structured-output extraction for free-form model responses.

The model is asked for JSON but is not obliged to produce it. ``extract`` turns
whatever came back into a record that carries every field of the requested
shape, trying in order:

1. the whole text as JSON,
2. a ``{...}`` span inside the text (greedy first-to-last brace, then a
   balanced span from the first brace),
3. section headings such as ``日记：`` / ``关键要点：`` / ``洞察与建议：``
   (only for shapes that declare them, and only when no JSON was found),
4. a shape-specific raw-text fallback for whatever is still missing or empty.

``extract`` never raises.
"""
import copy
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Pattern, Set, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SectionRule:
    field: str
    pattern: Pattern


@dataclass(frozen=True)
class ExtractionShape:
    """Required top-level fields and their defaults.

    Defaults may be nested dicts; nested keys are filled the same way as
    top-level ones. The default's type is the declared type of the field.
    """

    name: str
    defaults: Dict[str, Any]
    sections: Tuple[SectionRule, ...] = ()
    fallback: Optional[Callable[[Dict[str, Any], str, Set[str]], None]] = field(default=None, compare=False)

    def blank(self) -> Dict[str, Any]:
        return copy.deepcopy(self.defaults)


# --- JSON tiers ---

def _loads_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(text)
    except (ValueError, RecursionError):
        return None
    return value if isinstance(value, dict) else None


def _greedy_span(text: str) -> Optional[str]:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def _balanced_span(text: str) -> Optional[str]:
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def _substring_object(text: str) -> Optional[Dict[str, Any]]:
    greedy = _greedy_span(text)
    if greedy is None:
        return None
    parsed = _loads_object(greedy)
    if parsed is not None:
        return parsed
    balanced = _balanced_span(text)
    if balanced is not None and balanced != greedy:
        return _loads_object(balanced)
    return None


def _accepts(default: Any, value: Any) -> bool:
    if isinstance(default, bool):
        return isinstance(value, bool)
    if isinstance(default, (int, float)):
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if isinstance(default, str):
        return isinstance(value, str)
    if isinstance(default, list):
        return isinstance(value, list)
    if isinstance(default, dict):
        return isinstance(value, dict)
    return value is not None


def _merge(target: Dict[str, Any], defaults: Dict[str, Any], source: Dict[str, Any], filled: Set[str], prefix: str = "") -> None:
    for key, default in defaults.items():
        if key not in source:
            continue
        path = f"{prefix}{key}"
        value = source[key]
        if isinstance(default, dict) and default:
            if isinstance(value, dict):
                _merge(target[key], default, value, filled, f"{path}.")
            continue
        if path in filled or not _accepts(default, value):
            continue
        if isinstance(default, float):
            value = float(value)
        target[key] = copy.deepcopy(value)
        filled.add(path)


def _required_paths(defaults: Dict[str, Any], prefix: str = "") -> List[str]:
    paths = []
    for key, default in defaults.items():
        path = f"{prefix}{key}"
        if isinstance(default, dict) and default:
            paths.extend(_required_paths(default, f"{path}."))
        else:
            paths.append(path)
    return paths


def _complete(shape: ExtractionShape, filled: Set[str]) -> bool:
    return all(path in filled for path in _required_paths(shape.defaults))


def extract(raw_text: Any, shape: ExtractionShape) -> Dict[str, Any]:
    text = raw_text if isinstance(raw_text, str) else ("" if raw_text is None else str(raw_text))
    record = shape.blank()
    filled: Set[str] = set()
    found_json = False

    stripped = text.strip()
    whole = _loads_object(stripped) if stripped else None
    if whole is not None:
        found_json = True
        _merge(record, shape.defaults, whole, filled)

    if not _complete(shape, filled):
        partial = _substring_object(text)
        if partial is not None:
            found_json = True
            _merge(record, shape.defaults, partial, filled)

    if not found_json and shape.sections:
        for rule in shape.sections:
            if rule.field in filled:
                continue
            match = rule.pattern.search(text)
            if match and match.group(1).strip():
                record[rule.field] = match.group(1).strip()
                filled.add(rule.field)
        if filled:
            logger.debug("%s: recovered %s from section headings", shape.name, sorted(filled))

    if shape.fallback is not None:
        if not found_json and not _complete(shape, filled):
            logger.info("%s: no JSON in model output, used raw-text fallback", shape.name)
        shape.fallback(record, text, filled)

    return record


# --- Shapes ---

_HEADING_END = r"\**\s*[：:]\s*"


def _diary_fallback(record: Dict[str, Any], text: str, filled: Set[str]) -> None:
    # An empty diary is as good as none.
    if not record["diary"]:
        record["diary"] = text


DIARY_SHAPE = ExtractionShape(
    name="diary",
    defaults={"diary": "", "keyPoints": "", "insights": ""},
    sections=(
        SectionRule(
            "diary",
            re.compile(
                r"(?:完整日记|日记|diary)" + _HEADING_END + r"([\s\S]*?)(?=\**\s*(?:关键要点|要点|key\s*points)|\Z)",
                re.IGNORECASE,
            ),
        ),
        SectionRule(
            "keyPoints",
            re.compile(
                r"(?:关键要点|要点|key\s*points)" + _HEADING_END + r"([\s\S]*?)(?=\**\s*(?:洞察|建议|insights)|\Z)",
                re.IGNORECASE,
            ),
        ),
        SectionRule(
            "insights",
            re.compile(r"(?:洞察与建议|洞察|建议|insights)" + _HEADING_END + r"([\s\S]*)", re.IGNORECASE),
        ),
    ),
    fallback=_diary_fallback,
)

LONG_TERM_LETTER_LIMIT = 4000
LONG_TERM_KEY_POINT_LIMIT = 200


def _long_term_fallback(record: Dict[str, Any], text: str, filled: Set[str]) -> None:
    # Only synthesize when nothing structured came back at all.
    if filled:
        return
    body = text.strip()
    record["summary"]["timeRange"] = "近期"
    if body:
        record["summary"]["keyPoints"] = [body[:LONG_TERM_KEY_POINT_LIMIT]]
    record["psychologicalInsight"]["letter"] = body[:LONG_TERM_LETTER_LIMIT]


LONG_TERM_SHAPE = ExtractionShape(
    name="long_term",
    defaults={
        "summary": {"timeRange": "", "keyPoints": []},
        "psychologicalInsight": {"letter": "", "themes": []},
        "lifeAdvice": {"adviceBlocks": []},
        "metrics": {
            "emotionTrend": [],
            "lifeRadar": {
                "workStudy": 0.0,
                "relationship": 0.0,
                "selfCare": 0.0,
                "play": 0.0,
                "growth": 0.0,
            },
            "enrichmentCounts": [],
            "skillStats": [],
        },
    },
    fallback=_long_term_fallback,
)
