"""会话与消息模型。

Conversation 持有按时间顺序排列、只追加的消息序列；唯一的例外是
当前正在流式生成的那条消息（is_streaming=True），它的内容会被
ConversationReducer 不断替换，直到 complete 或被整条丢弃。

这两个 dataclass 都是不可变的：每次状态变化都产生新的实例，
旧快照永远不会被改写。
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional, Tuple

from assistant_core.domain.models import FunctionCallRecord

# 消息角色（与聊天接口的 role 字段对应）
Role = Literal["user", "assistant", "system"]


@dataclass(frozen=True)
class Message:
    """一条对话消息。

    - content: 流式过程中不断追加的正文，finalize 之后不再变化。
    - thinking: 可选的思考过程文本。
    - function_calls: 按到达顺序记录的函数调用。
    - is_streaming: 同一会话内最多只有一条消息为 True。
    """

    id: str
    role: Role
    content: str
    timestamp: datetime
    thinking: Optional[str] = None
    function_calls: Tuple[FunctionCallRecord, ...] = ()
    is_streaming: bool = False


@dataclass(frozen=True)
class Conversation:
    id: str
    messages: Tuple[Message, ...] = field(default_factory=tuple)

    @property
    def is_streaming(self) -> bool:
        return any(m.is_streaming for m in self.messages)

    def finalized_messages(self) -> Tuple[Message, ...]:
        """返回所有已经定稿的消息（用于构造下一次请求的历史）。"""

        return tuple(m for m in self.messages if not m.is_streaming)
