"""Domain-specific base models and exceptions for the Taskflow platform.

This module contains only the shared building blocks the domain packages
derive from; domain errors with richer context live next to their domain
(see ``taskflow.platform.licensing.exceptions``).
"""

from typing import Any

from pydantic import BaseModel as PydanticBaseModel, ConfigDict


class TaskflowError(Exception):
    """Base exception for the Taskflow platform."""


class ConfigurationError(TaskflowError):
    """Configuration error."""


class RepositoryError(TaskflowError):
    """Base repository error."""


class DuplicateEntityError(RepositoryError):
    """Duplicate entity in repository."""


# Base model for all domain entities
class BaseModel(PydanticBaseModel):
    """Base model for Taskflow domain entities."""

    model_config = ConfigDict(from_attributes=True, validate_assignment=True)


class FrozenModel(PydanticBaseModel):
    """Immutable domain value (catalog rows, seat counters, check results)."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")
