"""
Base classes and utilities for data quality monitoring models.

This module contains the foundational model configuration, the clock helpers
used to timestamp results, and entity naming helpers shared by all models.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# =============================================================================
# CLOCK
# =============================================================================

def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to timezone-aware UTC.

    Naive datetimes are assumed to already be in UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

# =============================================================================
# ENTITY NAMING
# =============================================================================

def split_name(entity: str) -> tuple:
    """Split a dotted entity identifier into its parts."""
    return tuple(entity.split("."))

# =============================================================================
# BASE CONFIGURATION
# =============================================================================

class BaseQualityModel(BaseModel):
    """
    Base model for all monitoring objects with common configuration.

    This provides standard Pydantic v2 configuration and common patterns
    used across all data quality models.
    """

    model_config = ConfigDict(
        arbitrary_types_allowed=True,  # Allow callables and SDK types
        validate_assignment=False,  # Disabled for performance
        validate_default=True,  # Validate defaults once
        populate_by_name=True,  # Allow field population by name
        use_enum_values=False,  # Keep enums as enum objects
        str_strip_whitespace=True,  # Strip whitespace from strings
        json_schema_extra={
            "title": "Data Quality Model",
            "description": "Base model for data quality monitoring objects"
        }
    )

