"""HTTP API for the storefront backend."""
