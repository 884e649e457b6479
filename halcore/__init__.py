"""hal-memory runtime core package."""

__all__ = [
    "chunking",
    "database",
    "embedders",
    "errors",
    "runtime",
]
