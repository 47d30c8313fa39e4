"""
Entity sources.

An entity source is the engine's view of the data it measures: it describes
an entity's columns and returns the current rows of selected columns.
"""

from .base import ChangeListener, EntitySource, InMemoryEntitySource
from .warehouse import WarehouseEntitySource

__all__ = [
    "ChangeListener",
    "EntitySource",
    "InMemoryEntitySource",
    "WarehouseEntitySource",
]
