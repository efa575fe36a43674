"""Storefront checkout, order and payment orchestration service."""

__version__ = "0.1.0"
