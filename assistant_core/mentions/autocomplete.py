"""@mention 自动补全。

触发判定：从光标向左找最近的 "@"，满足以下条件时处于触发区域：

- 该 "@" 位于文本开头，或前一个字符不是单词字符；
- "@" 与光标之间没有空白字符；
- "@" 后面不是 "["（光标位于一个已经编码好的 token 内部时不再触发）。

"@" 与光标之间的子串就是当前查询。

键盘状态机只有两种状态：inactive（state 为 None）与 active(selected_index)。
"""

import asyncio
from dataclasses import dataclass, replace
from typing import List, Optional

from assistant_core.config.settings import settings
from assistant_core.domain.exceptions import BusinessError
from assistant_core.domain.mentions import AnchorPosition, MentionQueryState, MentionReference
from assistant_core.infrastructure.logging.logger import logger
from assistant_core.mentions.codec import encode
from assistant_core.mentions.search import MentionSearcher

TRIGGER_CHAR = "@"

KEY_ARROW_DOWN = "ArrowDown"
KEY_ARROW_UP = "ArrowUp"
KEY_ENTER = "Enter"
KEY_ESCAPE = "Escape"


@dataclass(frozen=True)
class TriggerMatch:
    start: int  # "@" 的位置
    query: str


@dataclass(frozen=True)
class CommitResult:
    text: str
    caret: int
    reference: MentionReference
    token: str


def _is_word_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


def detect_trigger(text: str, caret: int) -> Optional[TriggerMatch]:
    caret = max(0, min(caret, len(text)))
    before = text[:caret]
    at = before.rfind(TRIGGER_CHAR)
    if at == -1:
        return None
    if at > 0 and _is_word_char(before[at - 1]):
        return None
    query = before[at + 1:]
    if any(ch.isspace() for ch in query):
        return None
    if query.startswith("["):
        return None
    return TriggerMatch(start=at, query=query)


class MentionAutocompleteController:
    """维护输入框文本、光标与候选列表选择状态。

    宿主 UI 在每次输入/光标移动后调用 update()，在按键时调用 handle_key()，
    handle_key() 返回 True 表示该按键已被自动补全消费（宿主不应再处理，例如不要发送消息）。
    """

    def __init__(self, searcher: MentionSearcher, *, blur_grace_ms: Optional[int] = None):
        self._searcher = searcher
        grace_ms = settings.mention_blur_grace_ms if blur_grace_ms is None else blur_grace_ms
        self._blur_grace = grace_ms / 1000
        self._text = ""
        self._caret = 0
        self._trigger: Optional[TriggerMatch] = None
        self._state: Optional[MentionQueryState] = None
        self._request_seq = 0
        self._blur_handle: Optional[asyncio.TimerHandle] = None
        self._context_ids: List[str] = []

    @property
    def state(self) -> Optional[MentionQueryState]:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is not None

    @property
    def trigger(self) -> Optional[TriggerMatch]:
        return self._trigger

    @property
    def text(self) -> str:
        return self._text

    @property
    def caret(self) -> int:
        return self._caret

    @property
    def context_document_ids(self) -> List[str]:
        """已经提交的 mention 对应的对象 id，按首次提交顺序、不重复。"""

        return list(self._context_ids)

    def take_context_document_ids(self) -> List[str]:
        """取出并清空待发送的上下文 id（消息发送后调用）。"""

        ids, self._context_ids = self._context_ids, []
        return ids

    def reset(self, text: str = "", caret: int = 0) -> None:
        self._text = text
        self._caret = caret
        self._deactivate()

    async def update(
        self,
        text: str,
        caret: int,
        anchor: Optional[AnchorPosition] = None,
    ) -> Optional[MentionQueryState]:
        """文本或光标变化后重新计算触发状态，必要时拉取候选。"""

        self._text = text
        self._caret = max(0, min(caret, len(text)))
        trigger = detect_trigger(text, self._caret)
        if trigger is None:
            self._deactivate()
            return None

        if trigger == self._trigger:
            if self._state is not None and anchor is not None:
                self._state = replace(self._state, anchor=anchor)
            return self._state

        self._trigger = trigger
        self._request_seq += 1
        seq = self._request_seq
        if self._state is not None:
            # 查询已变化：等待新候选期间选中项回到第一个
            self._state = replace(self._state, query=trigger.query, start=trigger.start, selected_index=0)
        try:
            candidates = await self._searcher.search(trigger.query)
        except BusinessError as e:
            logger.warning(
                "Mention candidates unavailable",
                extra={"extra": {"query": trigger.query, "code": e.code, "error": e.message}},
            )
            candidates = []
        if seq != self._request_seq:
            # 等待期间查询已变化或被关闭，丢弃过期结果
            return self._state

        if not candidates:
            self._state = None
            return None
        self._state = MentionQueryState(
            query=trigger.query,
            start=trigger.start,
            candidates=tuple(candidates),
            selected_index=0,
            anchor=anchor,
        )
        return self._state

    def handle_key(self, key: str) -> bool:
        state = self._state
        if state is None:
            return False
        count = len(state.candidates)
        if key == KEY_ARROW_DOWN:
            self._state = replace(state, selected_index=(state.selected_index + 1) % count)
            return True
        if key == KEY_ARROW_UP:
            self._state = replace(state, selected_index=(state.selected_index - 1 + count) % count)
            return True
        if key == KEY_ENTER:
            self._commit(state.selected, state.selected.default_alias)
            return True
        if key == KEY_ESCAPE:
            self.dismiss()
            return True
        return False

    def select(self, index: int, alias: Optional[str] = None) -> CommitResult:
        """直接提交第 index 个候选（相当于点击）；alias 为空时使用默认别名。"""

        state = self._state
        if state is None:
            raise IndexError("no active mention query")
        if not 0 <= index < len(state.candidates):
            raise IndexError(f"candidate index {index} out of range")
        reference = state.candidates[index]
        return self._commit(reference, alias if alias is not None else reference.default_alias)

    def dismiss(self) -> None:
        """Escape / 外部关闭：不提交，直接回到 inactive。"""

        self._deactivate()

    def blur(self) -> None:
        """输入框失焦：宽限时间过后仍未重新聚焦则关闭。需要在事件循环中调用。"""

        self._cancel_blur()
        if self._state is None and self._trigger is None:
            return
        if self._blur_grace <= 0:
            self._deactivate()
            return
        loop = asyncio.get_running_loop()
        self._blur_handle = loop.call_later(self._blur_grace, self._on_blur_timeout)

    def focus(self) -> None:
        self._cancel_blur()

    def _on_blur_timeout(self) -> None:
        self._blur_handle = None
        logger.debug("Mention query dismissed after blur")
        self._deactivate()

    def _cancel_blur(self) -> None:
        if self._blur_handle is not None:
            self._blur_handle.cancel()
            self._blur_handle = None

    def _commit(self, reference: MentionReference, alias: Optional[str]) -> CommitResult:
        state = self._state
        start = state.start if state is not None else self._caret
        token = encode(reference, alias)
        self._text = self._text[:start] + token + self._text[self._caret:]
        self._caret = start + len(token)
        if reference.id not in self._context_ids:
            self._context_ids.append(reference.id)
        self._deactivate()
        logger.debug(
            "Mention committed",
            extra={"extra": {"type": reference.type, "reference_id": reference.id}},
        )
        return CommitResult(text=self._text, caret=self._caret, reference=reference, token=token)

    def _deactivate(self) -> None:
        self._cancel_blur()
        self._request_seq += 1
        self._trigger = None
        self._state = None
