"""
Database Module
===============

Storage clients used by the runtime memory layer.
"""

__all__ = ["sqlite"]
