"""把单个协议帧解析成 StreamEvent。

只有以 "data: " 开头的行才是事件帧，其余内容是 JSON 对象：

    data: {"type": "token", "content": "..."}
    data: {"type": "thinking", "content": "..."}
    data: {"type": "function_call", "content": {"name": "...", "arguments": {...}, "result": ...}}
    data: {"type": "complete"}
    data: {"type": "error", "content": "..."}

坏 JSON 或未知 type 的帧就地丢弃并记录 WARNING，不抛异常：
分块边界上偶尔出现半截或编码异常的帧时，整次会话不能因此中断。
"""

import json
from typing import Any, Callable, Dict, Iterable, Iterator, Optional

from assistant_core.domain.models import (
    CompleteEvent,
    ErrorEvent,
    FunctionCallEvent,
    FunctionCallRecord,
    StreamEvent,
    ThinkingEvent,
    TokenEvent,
)
from assistant_core.infrastructure.logging.logger import logger

DATA_PREFIX = "data: "
EVENT_PREFIX = "event:"
PREVIEW_CHARS = 120
DEFAULT_ERROR_MESSAGE = "stream error"


class MalformedFrame(ValueError):
    """帧匹配了 data: 前缀，但内容无法转换成事件。"""


def _require_text(payload: Dict[str, Any]) -> str:
    content = payload.get("content")
    if not isinstance(content, str):
        raise MalformedFrame(f"content must be a string, got {type(content).__name__}")
    return content


def _build_token(payload: Dict[str, Any]) -> StreamEvent:
    return TokenEvent(text=_require_text(payload))


def _build_thinking(payload: Dict[str, Any]) -> StreamEvent:
    return ThinkingEvent(text=_require_text(payload))


def _build_function_call(payload: Dict[str, Any]) -> StreamEvent:
    content = payload.get("content")
    if not isinstance(content, dict):
        raise MalformedFrame("function_call content must be an object")
    name = content.get("name")
    if not isinstance(name, str) or not name:
        raise MalformedFrame("function_call content.name must be a non-empty string")
    record = FunctionCallRecord(
        name=name,
        arguments=content.get("arguments"),
        result=content.get("result"),
        resolved="result" in content,
    )
    return FunctionCallEvent(record=record)


def _build_complete(payload: Dict[str, Any]) -> StreamEvent:
    return CompleteEvent()


def _build_error(payload: Dict[str, Any]) -> StreamEvent:
    # error 帧必须终止会话，content 缺失时也不能丢弃
    content = payload.get("content")
    if content is None:
        return ErrorEvent(message=DEFAULT_ERROR_MESSAGE)
    return ErrorEvent(message=content if isinstance(content, str) else json.dumps(content, ensure_ascii=False))


_BUILDERS: Dict[str, Callable[[Dict[str, Any]], StreamEvent]] = {
    "token": _build_token,
    "thinking": _build_thinking,
    "function_call": _build_function_call,
    "complete": _build_complete,
    "error": _build_error,
}


def _preview(text: str) -> str:
    return text if len(text) <= PREVIEW_CHARS else text[:PREVIEW_CHARS] + "..."


def parse_frame(frame: str) -> Optional[StreamEvent]:
    """解析一帧。

    Returns:
        解析出的 StreamEvent；非事件帧（空行、注释、keep-alive、event: 行）
        以及被丢弃的坏帧返回 None。
    """

    line = frame.strip()
    if not line:
        return None
    if line.startswith(EVENT_PREFIX):
        logger.debug("Received event line", extra={"extra": {"event": line[len(EVENT_PREFIX):].strip()}})
        return None
    if not line.startswith(DATA_PREFIX):
        return None

    raw = line[len(DATA_PREFIX):]
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(
            "Dropped malformed frame",
            extra={"extra": {"reason": f"invalid json: {e.msg}", "frame": _preview(raw)}},
        )
        return None
    if not isinstance(payload, dict):
        logger.warning(
            "Dropped malformed frame",
            extra={"extra": {"reason": "payload is not an object", "frame": _preview(raw)}},
        )
        return None

    event_type = payload.get("type")
    builder = _BUILDERS.get(event_type) if isinstance(event_type, str) else None
    if builder is None:
        logger.warning("Dropped frame with unknown type", extra={"extra": {"type": event_type}})
        return None
    try:
        return builder(payload)
    except MalformedFrame as e:
        logger.warning(
            "Dropped malformed frame",
            extra={"extra": {"reason": str(e), "type": event_type, "frame": _preview(raw)}},
        )
        return None


def parse_frames(frames: Iterable[str]) -> Iterator[StreamEvent]:
    """同步地解析一组帧，跳过非事件帧。"""

    for frame in frames:
        event = parse_frame(frame)
        if event is not None:
            yield event
