"""统一 API 响应模型"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field


def _timestamp() -> str:
    return datetime.now(tz=timezone.utc).isoformat().replace("+00:00", "Z")


class Meta(BaseModel):
    status: int = 200
    timestamp: str = Field(default_factory=_timestamp)
    requestId: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source: Optional[str] = None


class ApiResponse(BaseModel):
    """标准 API 响应封装：{message, data, meta}"""
    message: str = ""
    data: Optional[Any] = None
    meta: Meta = Field(default_factory=Meta)


def request_id_of(request: Optional[Request]) -> str:
    if request is not None:
        request_id = getattr(request.state, "request_id", None)
        if request_id:
            return request_id
    return str(uuid.uuid4())


def respond(
    request: Optional[Request],
    message: str,
    data: Any = None,
    status_code: int = 200,
    source: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    body = ApiResponse(
        message=message,
        data=data,
        meta=Meta(status=status_code, requestId=request_id_of(request), source=source),
    )
    content = body.model_dump(mode="json")
    if source is None:
        content["meta"].pop("source", None)
    return JSONResponse(status_code=status_code, content=content, headers=headers)
