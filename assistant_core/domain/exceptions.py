"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 ChatService 或 UI 层做统一捕获与用户提示。

逐帧解析错误（坏 JSON、未知事件类型）不会走这里：它们在
EventParser 内部就地丢弃并记录日志，不会逃逸到会话层。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STREAM_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 session_id、conversation_id 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、读取超时等。"""


class StreamIdleTimeout(NetworkError):
    """等待下一个响应分块超过 stream_idle_timeout。"""


class ApiError(BusinessError):
    """服务端返回非 2xx 状态码时抛出。"""


class ValidationError(BusinessError):
    """参数或调用前置条件校验失败。"""


class StreamError(BusinessError):
    """服务端通过 error 事件显式终止了本次会话。"""


class StreamInterrupted(BusinessError):
    """响应体在收到 complete/error 之前就结束了（连接中断）。"""
