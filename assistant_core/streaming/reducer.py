"""会话状态折叠。

apply(conversation, event) 是一个纯函数：输入当前会话快照与一个事件，
返回新的会话快照，旧快照保持不变。ConversationSession 在此之上包了一层
可变引用，供 StreamSession 逐个事件增量应用。

事件严格按接收顺序应用，从不重排或合并；Token 是拼接而不是替换。

| 事件           | 效果                                       |
|----------------|--------------------------------------------|
| Token(t)       | 流式消息 content 追加 t                     |
| Thinking(t)    | 流式消息 thinking 替换为 t                  |
| FunctionCall(r)| 流式消息 function_calls 追加 r              |
| Complete       | 流式消息 is_streaming = False              |
| Error(m)       | 整条删除流式消息                            |
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple, assert_never
from uuid import uuid4

from assistant_core.domain.conversation import Conversation, Message
from assistant_core.domain.exceptions import ValidationError
from assistant_core.domain.models import (
    CompleteEvent,
    ErrorEvent,
    FunctionCallEvent,
    StreamEvent,
    ThinkingEvent,
    TokenEvent,
)


def _new_message_id(role: str) -> str:
    return f"{role}-{uuid4().hex}"


def streaming_index(conversation: Conversation) -> Optional[int]:
    for idx, message in enumerate(conversation.messages):
        if message.is_streaming:
            return idx
    return None


def streaming_message(conversation: Conversation) -> Optional[Message]:
    idx = streaming_index(conversation)
    return conversation.messages[idx] if idx is not None else None


def begin_turn(
    conversation: Conversation,
    user_text: str,
    *,
    now: Optional[datetime] = None,
) -> Conversation:
    """用户提交：追加一条已定稿的 user 消息，再追加一条空的流式 assistant 占位消息。

    占位消息的时间戳比 user 消息晚 1 毫秒，保证排序稳定。
    """

    if conversation.is_streaming:
        raise ValidationError(
            code="STREAM_IN_PROGRESS",
            message="conversation already has a streaming message",
            conversation_id=conversation.id,
        )
    ts = now or datetime.now(timezone.utc)
    user_msg = Message(id=_new_message_id("user"), role="user", content=user_text, timestamp=ts)
    placeholder = Message(
        id=_new_message_id("assistant"),
        role="assistant",
        content="",
        timestamp=ts + timedelta(milliseconds=1),
        is_streaming=True,
    )
    return replace(conversation, messages=conversation.messages + (user_msg, placeholder))


def _replace_at(messages: Tuple[Message, ...], idx: int, message: Message) -> Tuple[Message, ...]:
    return messages[:idx] + (message,) + messages[idx + 1:]


def discard_streaming(conversation: Conversation) -> Conversation:
    """删除流式消息（若存在），其余消息原样保留。"""

    idx = streaming_index(conversation)
    if idx is None:
        return conversation
    return replace(conversation, messages=conversation.messages[:idx] + conversation.messages[idx + 1:])


def apply(conversation: Conversation, event: StreamEvent) -> Conversation:
    """把一个事件折叠进会话，返回新的会话快照。

    没有流式消息时（会话已经结束）事件被忽略，原样返回。
    """

    idx = streaming_index(conversation)
    if idx is None:
        return conversation
    current = conversation.messages[idx]

    match event:
        case TokenEvent(text=text):
            updated = replace(current, content=current.content + text)
        case ThinkingEvent(text=text):
            updated = replace(current, thinking=text)
        case FunctionCallEvent(record=record):
            updated = replace(current, function_calls=current.function_calls + (record,))
        case CompleteEvent():
            updated = replace(current, is_streaming=False)
        case ErrorEvent():
            return discard_streaming(conversation)
        case _:
            assert_never(event)

    return replace(conversation, messages=_replace_at(conversation.messages, idx, updated))


class ConversationSession:
    """会话状态的唯一写入者。

    在同一事件循环线程内持有最新快照，所有修改都经由纯函数 apply/begin_turn
    产生新快照后整体替换，不存在基于过期快照的覆盖写。
    """

    def __init__(self, conversation: Conversation):
        self._conversation = conversation

    @classmethod
    def new(cls, conversation_id: str) -> "ConversationSession":
        return cls(Conversation(id=conversation_id))

    @property
    def conversation(self) -> Conversation:
        return self._conversation

    @property
    def is_streaming(self) -> bool:
        return self._conversation.is_streaming

    @property
    def streaming_message(self) -> Optional[Message]:
        return streaming_message(self._conversation)

    def begin(self, user_text: str, *, now: Optional[datetime] = None) -> Conversation:
        self._conversation = begin_turn(self._conversation, user_text, now=now)
        return self._conversation

    def apply(self, event: StreamEvent) -> Conversation:
        self._conversation = apply(self._conversation, event)
        return self._conversation

    def discard_streaming(self) -> Conversation:
        self._conversation = discard_streaming(self._conversation)
        return self._conversation
