"""shopfront - e-commerce backend with carts, orders and payment reconciliation."""

__version__ = "0.1.0"
