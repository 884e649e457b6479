"""
Entity Strategy - pluggable entity extraction and embedding augmentation

WHAT: Protocol for entity extraction/augmentation/matching plus the no-op default
WHERE: halcore/runtime/memory/entities.py - consulted by import, embedding and search
WHO: DocumentImporter (extract), TieredEmbedder (augment), SimilaritySearch (match)
TIME: No-op strategy is free

Entity handling is disabled by default. The `none` strategy extracts nothing,
leaves vectors untouched and matches nothing, so the `entities` table stays
empty and search results carry no entity matches. Other strategies register
under a name and are selected with `HAL_ENTITY_STRATEGY`.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Protocol

import numpy as np

from .models import ContentUnit, Entity


class EntityStrategy(Protocol):
    name: str

    def extract(self, unit: ContentUnit) -> List[Entity]:
        """Entities found in a stored unit."""

    def augment(self, text: str, vector: np.ndarray) -> np.ndarray:
        """Post-process an embedding with entity information."""

    def match(self, query: str) -> List[str]:
        """Stored entity texts relevant to a query."""


class NoOpEntityStrategy:
    name = "none"

    def extract(self, unit: ContentUnit) -> List[Entity]:
        return []

    def augment(self, text: str, vector: np.ndarray) -> np.ndarray:
        return vector

    def match(self, query: str) -> List[str]:
        return []


_STRATEGIES: Dict[str, Callable[[], EntityStrategy]] = {
    "none": NoOpEntityStrategy,
}


def register_entity_strategy(name: str, factory: Callable[[], EntityStrategy]) -> None:
    _STRATEGIES[name.strip().lower()] = factory


def get_entity_strategy(name: str | None = "none") -> EntityStrategy:
    """Instantiate the strategy registered under *name* (default: no-op)."""

    key = (name or "none").strip().lower()
    try:
        factory = _STRATEGIES[key]
    except KeyError:
        known = ", ".join(sorted(_STRATEGIES))
        raise ValueError(f"Unknown entity strategy {name!r}; expected one of: {known}") from None
    return factory()


__all__ = [
    "EntityStrategy",
    "NoOpEntityStrategy",
    "get_entity_strategy",
    "register_entity_strategy",
]
