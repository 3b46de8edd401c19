"""Response envelope shared by every endpoint."""

from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    success: bool
    data: Optional[T] = None
    meta: Optional[dict[str, Any]] = None
    errors: Optional[list[str]] = None

    @classmethod
    def ok(cls, data: Any = None, meta: dict[str, Any] | None = None) -> "ApiResponse":
        return cls(success=True, data=data, meta=meta)

    @classmethod
    def fail(cls, *errors: str) -> "ApiResponse":
        return cls(success=False, errors=list(errors))
