import asyncio
import json
from contextlib import asynccontextmanager

import httpx
import pytest

from assistant_core.domain.exceptions import (
    ApiError,
    NetworkError,
    StreamError,
    StreamIdleTimeout,
    StreamInterrupted,
    ValidationError,
)
from assistant_core.streaming.reducer import ConversationSession
from assistant_core.streaming.session import StreamSession


class SettingsStub:
    http_timeout = 1.0
    stream_idle_timeout = None
    chat_stream_path = "/api/chat/stream"

    def endpoint(self, path):
        return "http://test" + path


def frame(payload):
    return ("data: " + json.dumps(payload, ensure_ascii=False) + "\n").encode("utf-8")


class FakeResponse:
    def __init__(self, chunks, status_code=200, body=b"", pause=None):
        self.status_code = status_code
        self._chunks = chunks
        self._body = body
        # (index, seconds): 在输出第 index 个分块之前等待
        self._pause = pause

    async def aiter_bytes(self):
        for idx, chunk in enumerate(self._chunks):
            if self._pause and self._pause[0] == idx:
                await asyncio.sleep(self._pause[1])
            yield chunk

    async def aread(self):
        return self._body


class FakeClient:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *a):
        return False

    @asynccontextmanager
    async def stream(self, method, url, json=None, headers=None):
        self.requests.append({"method": method, "url": url, "json": json, "headers": headers})
        if self.error is not None:
            raise self.error
        try:
            yield self.response
        finally:
            self.closed = True


def _conversation(text="hi"):
    conv = ConversationSession.new("c1")
    conv.begin(text)
    return conv


def _run(session, *args):
    return asyncio.run(session.run(*args))


def test_hello_stream_completes():
    stream = frame({"type": "token", "content": "Hel"}) + frame({"type": "token", "content": "lo"}) + frame({"type": "complete"})
    client = FakeClient(FakeResponse([stream[:10], stream[10:33], stream[33:]]))
    updates = []
    conv = _conversation()
    session = StreamSession(conv, client=client, config=SettingsStub(), on_update=updates.append)

    outcome = _run(session, ["doc-1"])

    assert outcome.ok
    assert outcome.event_count == 3
    last = outcome.conversation.messages[-1]
    assert last.role == "assistant"
    assert last.content == "Hello"
    assert not last.is_streaming
    assert len(updates) == 3
    assert client.closed

    request = client.requests[0]
    assert request["method"] == "POST"
    assert request["url"] == "http://test/api/chat/stream"
    assert request["json"] == {
        "messages": [{"role": "user", "content": "hi"}],
        "contextDocumentIds": ["doc-1"],
        "conversationId": "c1",
    }


def test_history_contains_all_finalized_messages():
    conv = _conversation("first")
    client = FakeClient(FakeResponse([frame({"type": "token", "content": "one"}) + frame({"type": "complete"})]))
    _run(StreamSession(conv, client=client, config=SettingsStub()))

    conv.begin("second")
    client = FakeClient(FakeResponse([frame({"type": "complete"})]))
    _run(StreamSession(conv, client=client, config=SettingsStub()))
    assert client.requests[0]["json"]["messages"] == [
        {"role": "user", "content": "first"},
        {"role": "assistant", "content": "one"},
        {"role": "user", "content": "second"},
    ]


def test_malformed_frame_does_not_abort_stream():
    chunks = [
        frame({"type": "token", "content": "a"}),
        b'data: {"type":"tok\n',
        b"event: message\n: keep-alive\n\n",
        frame({"type": "token", "content": "b"}),
        frame({"type": "complete"}),
    ]
    outcome = _run(StreamSession(_conversation(), client=FakeClient(FakeResponse(chunks)), config=SettingsStub()))
    assert outcome.ok
    assert outcome.conversation.messages[-1].content == "ab"


def test_error_event_discards_partial_answer():
    conv = _conversation()
    chunks = [frame({"type": "token", "content": "partial"}), frame({"type": "error", "content": "boom"})]
    client = FakeClient(FakeResponse(chunks))

    outcome = _run(StreamSession(conv, client=client, config=SettingsStub()))

    assert outcome.status == "failed"
    assert isinstance(outcome.error, StreamError)
    assert outcome.error.message == "boom"
    assert [m.role for m in outcome.conversation.messages] == ["user"]
    assert not conv.is_streaming
    assert client.closed


def test_http_error_status():
    client = FakeClient(FakeResponse([], status_code=500, body=b"internal"))
    outcome = _run(StreamSession(_conversation(), client=client, config=SettingsStub()))
    assert outcome.status == "failed"
    assert isinstance(outcome.error, ApiError)
    assert outcome.error.http_status == 500
    assert not outcome.conversation.is_streaming


def test_connection_error():
    client = FakeClient(error=httpx.ConnectError("refused"))
    outcome = _run(StreamSession(_conversation(), client=client, config=SettingsStub()))
    assert isinstance(outcome.error, NetworkError)
    assert outcome.error.code == "NETWORK_ERROR"
    assert not outcome.conversation.is_streaming


def test_body_ends_without_complete():
    client = FakeClient(FakeResponse([frame({"type": "token", "content": "x"})]))
    outcome = _run(StreamSession(_conversation(), client=client, config=SettingsStub()))
    assert isinstance(outcome.error, StreamInterrupted)
    assert not outcome.conversation.is_streaming


def test_idle_timeout():
    config = SettingsStub()
    config.stream_idle_timeout = 0.05
    chunks = [frame({"type": "token", "content": "x"}), frame({"type": "complete"})]
    client = FakeClient(FakeResponse(chunks, pause=(1, 5)))
    outcome = _run(StreamSession(_conversation(), client=client, config=config))
    assert isinstance(outcome.error, StreamIdleTimeout)
    assert outcome.error.code == "STREAM_IDLE_TIMEOUT"
    assert not outcome.conversation.is_streaming
    assert client.closed


def test_cancel_mid_stream():
    chunks = [frame({"type": "token", "content": "x"}), frame({"type": "complete"})]
    client = FakeClient(FakeResponse(chunks, pause=(1, 5)))
    conv = _conversation()

    def on_update(_conversation):
        session.cancel()

    session = StreamSession(conv, client=client, config=SettingsStub(), on_update=on_update)
    outcome = _run(session)

    assert outcome.status == "cancelled"
    assert outcome.error is None
    assert [m.role for m in outcome.conversation.messages] == ["user"]
    assert client.closed


def test_cancel_before_run():
    client = FakeClient(FakeResponse([frame({"type": "complete"})]))
    session = StreamSession(_conversation(), client=client, config=SettingsStub())
    session.cancel()
    outcome = _run(session)
    assert outcome.status == "cancelled"
    assert not outcome.conversation.is_streaming


def test_outer_task_cancellation_propagates():
    chunks = [frame({"type": "token", "content": "x"}), frame({"type": "complete"})]
    client = FakeClient(FakeResponse(chunks, pause=(1, 5)))
    conv = _conversation()
    session = StreamSession(conv, client=client, config=SettingsStub())

    async def main():
        task = asyncio.create_task(session.run())
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(main())
    assert not conv.is_streaming
    assert client.closed


def test_session_runs_once():
    conv = _conversation()
    session = StreamSession(conv, client=FakeClient(FakeResponse([frame({"type": "complete"})])), config=SettingsStub())
    _run(session)
    with pytest.raises(ValidationError) as exc:
        _run(session)
    assert exc.value.code == "SESSION_REUSED"


def test_run_requires_streaming_message():
    session = StreamSession(ConversationSession.new("c1"), client=FakeClient(), config=SettingsStub())
    with pytest.raises(ValidationError) as exc:
        _run(session)
    assert exc.value.code == "NO_STREAMING_MESSAGE"


def test_default_client_created_per_run(monkeypatch):
    created = []

    def factory(*a, **kw):
        client = FakeClient(FakeResponse([frame({"type": "complete"})]))
        client.kwargs = kw
        created.append(client)
        return client

    monkeypatch.setattr("httpx.AsyncClient", factory)
    outcome = _run(StreamSession(_conversation(), config=SettingsStub()))
    assert outcome.ok
    assert created[0].kwargs == {"timeout": 1.0}


def test_body_iterator_closed_after_complete():
    class TrackedResponse(FakeResponse):
        body_closed = False

        async def aiter_bytes(self):
            try:
                async for chunk in super().aiter_bytes():
                    yield chunk
            finally:
                self.body_closed = True

    chunks = [frame({"type": "complete"}), frame({"type": "token", "content": "late"})]
    response = TrackedResponse(chunks)
    session = StreamSession(_conversation(), client=FakeClient(response), config=SettingsStub())

    async def scenario():
        outcome = await session.run()
        # 断言在事件循环关闭之前完成，不依赖异步生成器的终结回收
        return outcome, response.body_closed

    outcome, closed = asyncio.run(scenario())
    assert outcome.ok
    assert closed
    assert outcome.conversation.messages[-1].content == ""
