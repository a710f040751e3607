"""Assistant Core 顶层包。

该包提供聊天助手客户端的核心实现：流式回答的切帧、事件解析与会话状态折叠，
@mention 行内语法的编码/识别与自动补全，以及配置加载与结构化日志。
"""

from assistant_core.api.service import ChatService
from assistant_core.streaming.reducer import ConversationSession
from assistant_core.streaming.session import StreamOutcome, StreamSession

__all__ = ["ChatService", "ConversationSession", "StreamOutcome", "StreamSession"]
