"""Order placement and payment reconciliation service for the storefront."""

__version__ = "1.0.0"
