"""
API v1 package initialization.
"""

from storefront.api.v1.orders import router as orders_router

__all__ = ["orders_router"]
