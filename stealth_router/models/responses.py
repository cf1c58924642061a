"""Response envelope shared by the observability endpoints and error handlers.

Every body the service returns has the shape
``{success, data, error, meta}``; ``meta`` carries error details.
"""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel

DataT = TypeVar("DataT")


class ApiResponse(BaseModel, Generic[DataT]):
    success: bool
    data: DataT | None = None
    error: str | None = None
    meta: dict[str, Any] | None = None

    @classmethod
    def ok(cls, data: DataT) -> dict:
        """Serialized success envelope around *data*."""
        return cls(success=True, data=data).model_dump()

    @classmethod
    def failure(
        cls,
        error: str,
        *,
        data: DataT | None = None,
        meta: dict[str, Any] | None = None,
    ) -> dict:
        """Serialized failure envelope; ``meta`` is omitted when empty."""
        return cls(success=False, data=data, error=error, meta=meta or None).model_dump()
