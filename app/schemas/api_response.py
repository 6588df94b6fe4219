"""
app.schemas.api_response
~~~~~~~~~~~~~~~~~~~~~~~~

HTTP 接口的统一应答体。

WebSocket 事件有自己的 ``{"event", "data"}`` 协议，不使用本结构。
"""
from __future__ import annotations

from typing import Any, Generic, TypeVar

from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """统一 JSON 应答体::

        {"code": 200, "data": {...}, "msg": "success"}

    Attributes:
        code: 业务状态码，200 表示成功，失败时与 HTTP 状态码一致。
        data: 实际业务数据。
        msg: 人类可读的状态消息。
    """

    code: int = Field(default=200, description="业务状态码")
    data: T = Field(..., description="业务数据")
    msg: str = Field(default="success", description="状态消息")

    @classmethod
    def ok(cls, data: T, msg: str = "success") -> ApiResponse[T]:
        """快捷构造成功响应。"""
        return cls(code=200, data=data, msg=msg)

    @classmethod
    def fail(cls, msg: str = "error", code: int = 500, data: Any = None) -> ApiResponse[Any]:
        """快捷构造失败响应。"""
        return cls(code=code, data=data, msg=msg)

    @classmethod
    def fail_response(cls, msg: str, status_code: int) -> JSONResponse:
        """构造失败响应并直接包装为同状态码的 ``JSONResponse``。"""
        return JSONResponse(
            status_code=status_code,
            content=cls.fail(msg=msg, code=status_code).model_dump(),
        )
