"""流式协议的事件模型。

本模块定义了 StreamSession 内部在 EventParser 与 ConversationReducer
之间传递的标准数据结构：

- JsonValue: 任意 JSON 值（函数调用的参数/结果不假设任何 schema）。
- FunctionCallRecord: 模型触发的一次函数调用及其（可选的）结果。
- StreamEvent: Token / Thinking / FunctionCall / Complete / Error 五种事件的联合类型。

一次会话恰好以一个 CompleteEvent 或 ErrorEvent 结束，之后不再有合法事件。
"""

from dataclasses import dataclass
from typing import ClassVar, Dict, List, Literal, Optional, Union

# 任意 JSON 值
JsonValue = Union[None, bool, int, float, str, List["JsonValue"], Dict[str, "JsonValue"]]

EventKind = Literal["token", "thinking", "function_call", "complete", "error"]


@dataclass(frozen=True)
class FunctionCallRecord:
    """一次函数调用。

    - name: 函数名。
    - arguments: 参数，原样保存的 JSON 值。
    - result: 调用结果；只有 resolved 为 True 时才有意义（结果本身可能就是 null）。
    """

    name: str
    arguments: JsonValue = None
    result: JsonValue = None
    resolved: bool = False


@dataclass(frozen=True)
class TokenEvent:
    """回答文本的一个增量片段，按到达顺序拼接。"""

    kind: ClassVar[EventKind] = "token"
    text: str


@dataclass(frozen=True)
class ThinkingEvent:
    """思考过程全文，整体替换上一次的内容。"""

    kind: ClassVar[EventKind] = "thinking"
    text: str


@dataclass(frozen=True)
class FunctionCallEvent:
    kind: ClassVar[EventKind] = "function_call"
    record: FunctionCallRecord


@dataclass(frozen=True)
class CompleteEvent:
    kind: ClassVar[EventKind] = "complete"


@dataclass(frozen=True)
class ErrorEvent:
    kind: ClassVar[EventKind] = "error"
    message: str


StreamEvent = Union[TokenEvent, ThinkingEvent, FunctionCallEvent, CompleteEvent, ErrorEvent]

TERMINAL_EVENTS = (CompleteEvent, ErrorEvent)


def is_terminal(event: Optional[StreamEvent]) -> bool:
    return isinstance(event, TERMINAL_EVENTS)
