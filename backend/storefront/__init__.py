"""Storefront backend: order lifecycle, pricing and customer notifications."""

__version__ = "1.0.0"
