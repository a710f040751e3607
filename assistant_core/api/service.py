"""对外 API 服务模块。

提供给宿主 UI 调用的简化入口：发送消息、取消当前流式回答、搜索 @mention 候选。
"""

import logging
from typing import Callable, Dict, Iterable, Optional

from assistant_core.config.settings import Settings, settings
from assistant_core.domain.conversation import Conversation
from assistant_core.domain.exceptions import BusinessError, ValidationError
from assistant_core.infrastructure.logging.logger import log_event, logger
from assistant_core.mentions.autocomplete import MentionAutocompleteController
from assistant_core.mentions.search import MentionSearchClient
from assistant_core.streaming.reducer import ConversationSession
from assistant_core.streaming.session import StreamOutcome, StreamSession

# 用户可见的失败提示：(标题, 描述)
Notifier = Callable[[str, str], None]

FAILURE_TITLE = "錯誤"
FAILURE_DESCRIPTION = "生成回應失敗，請再試一次"


def log_notifier(title: str, description: str) -> None:
    logger.error(f"{title}: {description}")


class ChatService:
    """一个会话对应一个 ChatService。

    - send(): 校验输入 -> 追加 user 消息与流式占位 -> 打开 StreamSession。
    - cancel(): 取消进行中的流式回答。
    失败（传输错误、error 事件）通过 notifier 以用户可见的方式报告。
    """

    def __init__(
        self,
        conversation: ConversationSession,
        *,
        config: Optional[Settings] = None,
        notifier: Optional[Notifier] = None,
        on_update: Optional[Callable[[Conversation], None]] = None,
        client=None,
    ):
        self._conversation = conversation
        self._config = config or settings
        self._notifier = notifier or log_notifier
        self._on_update = on_update
        self._client = client
        self._active: Optional[StreamSession] = None

    @property
    def conversation(self) -> Conversation:
        return self._conversation.conversation

    @property
    def is_streaming(self) -> bool:
        return self._conversation.is_streaming

    async def send(self, text: str, context_document_ids: Iterable[str] = ()) -> Optional[StreamOutcome]:
        """发送一条用户消息并等待流式回答结束。

        Returns:
            StreamOutcome；空白输入不发送，返回 None。

        Raises:
            ValidationError: 会话中已有正在生成的回答（code="STREAM_IN_PROGRESS"）。
        """

        if not text or not text.strip():
            return None
        if self._conversation.is_streaming or self._active is not None:
            raise ValidationError(
                code="STREAM_IN_PROGRESS",
                message="wait for the current answer before sending another message",
                conversation_id=self.conversation.id,
            )

        self._conversation.begin(text)
        if self._on_update is not None:
            self._on_update(self.conversation)

        session = StreamSession(
            self._conversation,
            client=self._client,
            config=self._config,
            on_update=self._on_update,
        )
        self._active = session
        try:
            async with session:
                outcome = await session.run(context_document_ids)
        finally:
            self._active = None

        if outcome.status == "failed":
            self._report(outcome.error)
        return outcome

    async def send_from(self, controller: MentionAutocompleteController) -> Optional[StreamOutcome]:
        """发送自动补全控制器当前的输入内容，附带已提交 mention 的对象 id。"""

        text = controller.text
        if not text.strip():
            return None
        context_ids = controller.take_context_document_ids()
        controller.reset()
        return await self.send(text, context_ids)

    def cancel(self) -> None:
        if self._active is not None:
            self._active.cancel()

    def _report(self, error: Optional[BusinessError]) -> None:
        details: Dict[str, object] = {"conversation_id": self.conversation.id}
        if error is not None:
            details.update(code=error.code, error=error.message)
        log_event(logging.ERROR, "Chat failed", details)
        self._notifier(FAILURE_TITLE, FAILURE_DESCRIPTION)


_search_client: Optional[MentionSearchClient] = None


def get_mention_search_client() -> MentionSearchClient:
    """获取默认的候选搜索客户端实例（单例，缓存跨输入框共享）。"""
    global _search_client
    if _search_client is None:
        _search_client = MentionSearchClient(settings)
    return _search_client


def create_mention_controller() -> MentionAutocompleteController:
    return MentionAutocompleteController(get_mention_search_client())
