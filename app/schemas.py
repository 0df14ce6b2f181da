from typing import Any, Optional

from fastapi import HTTPException
from pydantic import BaseModel

from .errors import STATUS_BY_KIND, ErrorKind, ServiceError


class ActionResult(BaseModel):
    """Outcome of a ledger, verification or booking operation"""

    success: bool
    message: str
    data: Optional[Any] = None
    error: Optional[ErrorKind] = None
    code: Optional[str] = None

    @classmethod
    def ok(cls, message: str, data: Any = None) -> "ActionResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def from_error(cls, exc: ServiceError) -> "ActionResult":
        return cls(
            success=False,
            message=exc.message,
            data=exc.data,
            error=exc.kind,
            code=exc.code,
        )

    def raise_for_failure(self) -> "ActionResult":
        """Raise an HTTPException carrying the failure, return self on success"""
        if self.success:
            return self
        raise HTTPException(
            status_code=STATUS_BY_KIND.get(self.error, 400),
            detail={
                "message": self.message,
                "error": self.error.value if self.error else None,
                "code": self.code,
                "data": self.data,
            },
        )
