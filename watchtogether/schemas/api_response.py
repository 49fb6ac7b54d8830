"""
watchtogether.schemas.api_response
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

REST 接口的统一应答体。业务异常与未捕获异常也经由 ``fail`` 转为同一结构。
"""
from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """REST 应答体。

    .. code-block:: json

        {"code": 200, "data": {...}, "msg": "success"}

    Attributes:
        code: 业务状态码，200 表示成功。
        data: 实际业务数据。
        msg: 人类可读的状态消息。
    """

    code: int = Field(default=200, description="业务状态码")
    data: T = Field(..., description="业务数据")
    msg: str = Field(default="success", description="状态消息")

    @classmethod
    def ok(cls, data: T, msg: str = "success") -> ApiResponse[T]:
        """成功应答，``code`` 固定为 200。"""
        return cls(code=200, data=data, msg=msg)

    @classmethod
    def fail(cls, msg: str = "error", code: int = 500, data: Any = None) -> ApiResponse[Any]:
        """失败应答。``code`` 与 HTTP 状态码保持一致，``data`` 可携带拒绝原因。"""
        return cls(code=code, data=data, msg=msg)
