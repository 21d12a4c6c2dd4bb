"""Response envelope returned by the back office."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class RpcResponse(BaseModel):
    """The ``{status, data, hasMore?, message?}`` envelope every endpoint returns.

    Attributes:
        status: ``"success"`` or ``"error"``.
        data: Endpoint-specific payload.
        has_more: Explicit pagination flag when the endpoint provides one.
        message: Human-readable error or status message.
        pagination: Optional pagination block (``{"totalPages": ...}``).
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    status: str
    data: Any = None
    has_more: Optional[bool] = Field(default=None, alias="hasMore")
    message: Optional[str] = None
    pagination: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        """Return True when the server reported success."""
        return self.status == "success"


__all__ = ["RpcResponse"]
