"""
watchparty.schemas.api_response
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

HTTP 接口的统一应答信封。

WebSocket 事件有自己的帧格式（见 ``watchparty.api.ws``），这里只服务于
``/api/rooms`` 等只读 REST 端点与全局异常处理器。失败应答的 ``code``
同时作为 HTTP 状态码返回。
"""
from __future__ import annotations

from typing import Any, Generic, TypeVar

from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from watchparty.services.errors import WatchPartyError

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """``{"code": ..., "data": ..., "msg": ...}`` 应答信封。

    Attributes:
        code: 200 表示成功；失败时与 HTTP 状态码一致。
        data: 业务数据，失败时为 ``None``。
        msg: 状态消息，失败时为房间业务异常的错误文本。
    """

    code: int = Field(default=200, description="状态码")
    data: T = Field(..., description="业务数据")
    msg: str = Field(default="success", description="状态消息")

    @classmethod
    def ok(cls, data: T, msg: str = "success") -> ApiResponse[T]:
        return cls(code=200, data=data, msg=msg)

    @classmethod
    def fail(cls, msg: str = "error", code: int = 500, data: Any = None) -> ApiResponse[Any]:
        return cls(code=code, data=data, msg=msg)

    @classmethod
    def from_error(cls, exc: WatchPartyError, code: int = 400) -> ApiResponse[Any]:
        """把房间业务异常包装为失败应答，``msg`` 与 WebSocket ``error`` 事件一致。"""
        return cls.fail(msg=exc.message, code=code)

    def to_response(self) -> JSONResponse:
        """以 ``code`` 作为 HTTP 状态码输出，用于绕过 ``response_model`` 的失败分支。"""
        return JSONResponse(status_code=self.code, content=self.model_dump())
