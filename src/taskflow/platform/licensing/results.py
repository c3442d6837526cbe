"""Typed success/failure values returned by the exposed licensing operations."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any, Generic, TypeVar

import structlog

from taskflow.platform.licensing.exceptions import LicensingError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Result of a lifecycle or entitlement operation.

    Callers branch on ``success`` (or ``error_code``); ``unwrap()`` is there
    for call sites that prefer the error raised.
    """

    success: bool
    value: T | None = None
    error: LicensingError | None = None

    @classmethod
    def ok(cls, value: T) -> "OperationResult[T]":
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, error: LicensingError) -> "OperationResult[T]":
        return cls(success=False, error=error)

    @property
    def error_code(self) -> str | None:
        return self.error.error_code if self.error else None

    def unwrap(self) -> T:
        """Return the value, raising the carried error on failure."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    def to_dict(self) -> dict[str, Any]:
        value = self.value
        if hasattr(value, "model_dump"):
            value = value.model_dump(mode="json")
        return {
            "success": self.success,
            "value": value,
            "error": self.error.to_dict() if self.error else None,
        }


def returns_result(operation: str):
    """
    Decorator turning an async operation into one returning ``OperationResult``.

    Recoverable licensing errors become failed results. Integrity errors
    (``recoverable = False``) are logged and re-raised.

    Example:
        @returns_result("users.add")
        async def add_user(self, tenant_id, data):
            ...
    """

    def decorator(
        func: Callable[..., Awaitable[T]],
    ) -> Callable[..., Awaitable[OperationResult[T]]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> OperationResult[T]:
            try:
                value = await func(*args, **kwargs)
            except LicensingError as e:
                if not e.recoverable:
                    logger.error(
                        "Licensing invariant violated",
                        operation=operation,
                        error_code=e.error_code,
                        error=e.message,
                        context=e.context,
                    )
                    raise
                logger.info(
                    "Licensing operation rejected",
                    operation=operation,
                    error_code=e.error_code,
                    context=e.context,
                )
                return OperationResult.fail(e)
            return OperationResult.ok(value)

        return wrapper

    return decorator
