"""
Database package initialization.

- base: declarative base and mixins
- connection: async engine, sessions and the FastAPI dependency
- models: ORM models for orders and the read-only account/catalog projections
"""

__all__ = []
