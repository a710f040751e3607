"""StreamSession：一次流式请求的编排者。

职责：

1. 以 POST 打开流式接口，请求体为 {messages, contextDocumentIds, conversationId}。
2. 把响应体分块依次送入 FrameDecoder -> parse_frame -> ConversationSession。
3. 在任何退出路径上（complete、error 事件、传输失败、空闲超时、取消）释放连接，
   并保证会话中不会残留 is_streaming=True 的消息。

HTTP 客户端与响应对象都放在 AsyncExitStack 里，作用域就是 run() 本身，
不存在跨调用存活的连接句柄。
"""

import asyncio
import logging
import time
from contextlib import AsyncExitStack, aclosing
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Literal, Optional
from uuid import uuid4

import httpx

from assistant_core.config.settings import Settings, settings
from assistant_core.domain.conversation import Conversation
from assistant_core.domain.exceptions import (
    ApiError,
    BusinessError,
    NetworkError,
    StreamError,
    StreamIdleTimeout,
    StreamInterrupted,
    ValidationError,
)
from assistant_core.domain.models import CompleteEvent, ErrorEvent, StreamEvent
from assistant_core.infrastructure.logging.logger import log_event
from assistant_core.streaming.events import parse_frame
from assistant_core.streaming.frames import iter_frames
from assistant_core.streaming.reducer import ConversationSession

OutcomeStatus = Literal["completed", "failed", "cancelled"]


@dataclass
class StreamOutcome:
    """一次会话的最终结果。

    - status: completed / failed / cancelled。
    - conversation: 结束时的会话快照（保证没有流式消息）。
    - error: failed 时的业务异常。
    - event_count: 实际应用到会话上的事件数。
    """

    status: OutcomeStatus
    conversation: Conversation
    error: Optional[BusinessError] = None
    event_count: int = 0

    @property
    def ok(self) -> bool:
        return self.status == "completed"


class StreamSession:
    def __init__(
        self,
        conversation: ConversationSession,
        *,
        client: Optional[httpx.AsyncClient] = None,
        config: Optional[Settings] = None,
        on_update: Optional[Callable[[Conversation], None]] = None,
    ):
        self._conversation = conversation
        self._client = client
        self._config = config or settings
        self._on_update = on_update
        self._session_id = f"s-{uuid4().hex}"
        self._task: Optional[asyncio.Task] = None
        self._cancel_requested = False
        self._started = False
        self._event_count = 0

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def conversation(self) -> Conversation:
        return self._conversation.conversation

    async def __aenter__(self) -> "StreamSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def cancel(self) -> None:
        """请求取消。可以在任意挂起点调用，重复调用无副作用。"""

        self._cancel_requested = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def aclose(self) -> None:
        """组件销毁：取消仍在进行的请求并等待资源释放。"""

        if self._task is not None and not self._task.done():
            self.cancel()
            await asyncio.gather(self._task, return_exceptions=True)

    async def run(self, context_document_ids: Iterable[str] = ()) -> StreamOutcome:
        """执行一次流式请求，直到 complete / error / 失败 / 取消。

        Returns:
            StreamOutcome；显式 cancel() 产生 status="cancelled"。

        Raises:
            asyncio.CancelledError: 外层任务被取消时原样向上传播（流式消息已被丢弃）。
            ValidationError: 会话中没有待填充的流式消息，或本 session 已经运行过。
        """

        if self._started:
            raise ValidationError(code="SESSION_REUSED", message="a StreamSession can only run once")
        if not self._conversation.is_streaming:
            raise ValidationError(
                code="NO_STREAMING_MESSAGE",
                message="call ConversationSession.begin() before opening a stream",
            )
        self._started = True

        log_ctx: Dict[str, Any] = {
            "session_id": self._session_id,
            "conversation_id": self.conversation.id,
        }
        start_time = time.monotonic()
        payload = self._build_payload(list(context_document_ids))
        log_event(
            logging.INFO,
            "Opening stream",
            log_ctx,
            message_count=len(payload["messages"]),
            context_count=len(payload["contextDocumentIds"]),
        )

        self._task = asyncio.create_task(self._drive(payload))
        if self._cancel_requested:
            self._task.cancel()
        try:
            await self._task
            outcome = StreamOutcome("completed", self.conversation, event_count=self._event_count)
        except BusinessError as e:
            outcome = StreamOutcome("failed", self._discard(), error=e, event_count=self._event_count)
        except asyncio.CancelledError:
            self._discard()
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                log_event(logging.INFO, "Stream cancelled by caller task", log_ctx)
                raise
            outcome = StreamOutcome("cancelled", self.conversation, event_count=self._event_count)
        finally:
            self._discard()

        elapsed = round(time.monotonic() - start_time, 3)
        if outcome.status == "failed":
            err = outcome.error
            log_event(
                logging.WARNING,
                "Stream failed",
                log_ctx,
                code=err.code if err else None,
                error=err.message if err else None,
                events=outcome.event_count,
                elapsed_seconds=elapsed,
            )
        else:
            log_event(
                logging.INFO,
                f"Stream {outcome.status}",
                log_ctx,
                events=outcome.event_count,
                elapsed_seconds=elapsed,
            )
        return outcome

    def _build_payload(self, context_document_ids: List[str]) -> Dict[str, Any]:
        history = [
            {"role": m.role, "content": m.content}
            for m in self.conversation.finalized_messages()
        ]
        return {
            "messages": history,
            "contextDocumentIds": context_document_ids,
            "conversationId": self.conversation.id,
        }

    async def _drive(self, payload: Dict[str, Any]) -> None:
        url = self._config.endpoint(self._config.chat_stream_path)
        try:
            async with AsyncExitStack() as stack:
                client = self._client
                if client is None:
                    client = await stack.enter_async_context(
                        httpx.AsyncClient(timeout=self._config.http_timeout)
                    )
                response = await stack.enter_async_context(
                    client.stream(
                        "POST",
                        url,
                        json=payload,
                        headers={"Content-Type": "application/json", "Accept": "text/event-stream"},
                    )
                )
                if response.status_code >= 400:
                    body = await response.aread()
                    raise ApiError(
                        code="API_ERROR",
                        message=body.decode("utf-8", errors="replace") or f"HTTP {response.status_code}",
                        http_status=response.status_code,
                    )
                chunks = await stack.enter_async_context(aclosing(self._chunks(response)))
                frames = await stack.enter_async_context(aclosing(iter_frames(chunks)))
                async for frame in frames:
                    event = parse_frame(frame)
                    if event is None:
                        continue
                    self._apply(event)
                    if isinstance(event, CompleteEvent):
                        return
                    if isinstance(event, ErrorEvent):
                        raise StreamError(code="STREAM_ERROR", message=event.message)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)
        raise StreamInterrupted(
            code="STREAM_INTERRUPTED",
            message="stream ended before a complete event",
        )

    async def _chunks(self, response: httpx.Response) -> AsyncIterator[bytes]:
        timeout = self._config.stream_idle_timeout
        async with aclosing(response.aiter_bytes()) as body:
            iterator = body.__aiter__()
            while True:
                try:
                    if timeout:
                        chunk = await asyncio.wait_for(iterator.__anext__(), timeout)
                    else:
                        chunk = await iterator.__anext__()
                except StopAsyncIteration:
                    return
                except asyncio.TimeoutError:
                    raise StreamIdleTimeout(
                        code="STREAM_IDLE_TIMEOUT",
                        message=f"no data received for {timeout} seconds",
                    )
                yield chunk

    def _apply(self, event: StreamEvent) -> None:
        self._event_count += 1
        conversation = self._conversation.apply(event)
        if self._on_update is not None:
            self._on_update(conversation)

    def _discard(self) -> Conversation:
        if self._conversation.is_streaming:
            conversation = self._conversation.discard_streaming()
            if self._on_update is not None:
                self._on_update(conversation)
        return self.conversation
