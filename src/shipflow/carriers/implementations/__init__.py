"""Carrier gateway implementations."""

from .mock_gateway import MockCarrierGateway

__all__ = ["MockCarrierGateway"]
