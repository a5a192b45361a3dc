"""Core configuration and logging shared across the storefront backend."""
