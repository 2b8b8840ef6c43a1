from __future__ import annotations

import datetime as dt
import json
import re
from dataclasses import dataclass, field
from typing import Any

from .errors import RecordParseError
from .kv_reader import BUBBLE_PREFIX, COMPOSER_PREFIX
from .models import Bubble, BubbleType, ModelConfig, ThinkingBlock, TokenCount, WorkspaceInfo

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")


@dataclass
class RawComposer:
    version: int | None = None
    created_at_ms: int | None = None
    model_config: ModelConfig = field(default_factory=ModelConfig)
    unified_mode: str = ""

    @property
    def created_at(self) -> dt.datetime | None:
        if self.created_at_ms is None:
            return None
        return from_millis(self.created_at_ms)


def from_millis(value: int) -> dt.datetime | None:
    try:
        return dt.datetime.fromtimestamp(value / 1000, tz=dt.UTC)
    except (OverflowError, OSError, ValueError):
        return None


def to_millis(value: dt.datetime) -> int:
    return int(round(value.timestamp() * 1000))


def parse_timestamp(value: Any) -> dt.datetime | None:
    """Parse ISO-8601 first, then epoch milliseconds; ``None`` when neither fits."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return from_millis(value)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    parsed = None
    if ISO_DATE_RE.match(text):
        try:
            parsed = dt.datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
    if parsed is not None:
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=dt.UTC)
        return parsed.astimezone(dt.UTC)
    try:
        millis = int(text)
    except ValueError:
        return None
    return from_millis(millis)


def _load_object(data: bytes, key: str | None) -> dict[str, Any]:
    try:
        payload = json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise RecordParseError(f"invalid json: {exc}", key) from exc
    if not isinstance(payload, dict):
        raise RecordParseError("payload is not an object", key)
    return payload


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return 0


def _opt_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def parse_composer(data: bytes, *, key: str | None = None) -> RawComposer:
    payload = _load_object(data, key)
    model = _dict(payload.get("modelConfig"))
    return RawComposer(
        version=_opt_int(payload.get("_v")),
        created_at_ms=_opt_int(payload.get("createdAt")),
        model_config=ModelConfig(
            model_name=_str(model.get("modelName")),
            max_mode=bool(model.get("maxMode") is True),
        ),
        unified_mode=_str(payload.get("unifiedMode")),
    )


def parse_bubble(data: bytes, *, key: str | None = None) -> Bubble:
    payload = _load_object(data, key)
    bubble_id = payload.get("bubbleId")
    if not isinstance(bubble_id, str) or not bubble_id:
        raise RecordParseError("missing bubbleId", key)

    thinking = None
    raw_thinking = payload.get("thinking")
    if isinstance(raw_thinking, dict):
        signature = raw_thinking.get("signature")
        thinking = ThinkingBlock(
            text=_str(raw_thinking.get("text")),
            signature=signature if isinstance(signature, str) else None,
        )

    tokens = _dict(payload.get("tokenCount"))
    return Bubble(
        bubble_id=bubble_id,
        bubble_type=BubbleType.from_code(payload.get("type", 0)),
        text=_str(payload.get("text")),
        created_at=parse_timestamp(payload.get("createdAt")),
        thinking=thinking,
        thinking_duration_ms=_opt_int(payload.get("thinkingDurationMs")),
        token_count=TokenCount(
            input_tokens=_int(tokens.get("inputTokens")),
            output_tokens=_int(tokens.get("outputTokens")),
        ),
        is_agentic=payload.get("isAgentic") is True,
    )


def workspace_from_payload(data: bytes) -> WorkspaceInfo | None:
    try:
        payload = json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    uris = payload.get("workspaceUris")
    if not isinstance(uris, list) or not uris or not isinstance(uris[0], str):
        return None
    info = WorkspaceInfo.from_uri(uris[0])
    project_dir = payload.get("workspaceProjectDir")
    if isinstance(project_dir, str):
        info.cursor_path = project_dir
    return info


def composer_id_from_key(key: str) -> str | None:
    if not key.startswith(COMPOSER_PREFIX):
        return None
    return key[len(COMPOSER_PREFIX) :] or None


def conversation_id_from_key(key: str) -> str | None:
    """``bubbleId:{composer_id}:{bubble_id}`` -> ``composer_id``."""

    if not key.startswith(BUBBLE_PREFIX):
        return None
    return key[len(BUBBLE_PREFIX) :].split(":", 1)[0] or None
