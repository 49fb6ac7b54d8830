"""
watchtogether.core.errors
~~~~~~~~~~~~~~~~~~~~~~~~~

房间协调引擎的业务异常体系。

每个异常携带两个类属性:
  - ``reason``      —— 推送给客户端的 ``operationRejected`` 原因标签
  - ``status_code`` —— REST 接口映射的 HTTP 状态码

异常只在检测到它的处理边界被捕获并转换为一次拒绝回复，
不会导致进程退出，也不会留下部分修改的房间状态。
"""
from __future__ import annotations


class RoomError(Exception):
    """房间协调相关异常的基类。"""

    reason: str = "error"
    status_code: int = 400

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.reason)
        self.message: str = message or self.reason


class NotFoundError(RoomError):
    """房间码不存在（或房间已被销毁）。"""

    reason = "roomNotFound"
    status_code = 404


class AuthorityError(RoomError):
    """非管理员连接尝试执行播放控制。"""

    reason = "notAdmin"
    status_code = 403


class ValidationError(RoomError):
    """视频地址无法解析。"""

    reason = "invalidVideo"
    status_code = 400


class MalformedEventError(ValidationError):
    """入站消息不是合法 JSON，或不匹配任何已知事件结构。"""

    reason = "malformedEvent"


class RateLimitedError(RoomError):
    """连接发送消息过于频繁。"""

    reason = "rateLimited"
    status_code = 429


class CapacityError(RoomError):
    """房间码空间在重试上限内没有找到空位。

    仅在 ``RoomRegistry`` 内部使用：捕获后通过加长房间码解决，不会暴露给调用方。
    """

    reason = "capacityExhausted"
    status_code = 503
