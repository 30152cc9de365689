"""
Gateway Registry - Resolution of carrier gateway adapters by name

Maps the CARRIER_GATEWAY setting ("http", "mock") to an adapter factory so
the application wiring never imports concrete adapters directly.
"""

from typing import Callable, Dict

from .http_gateway import HttpCarrierGateway
from .implementations.mock_gateway import MockCarrierGateway
from .ports import CarrierGatewayPort


GatewayFactory = Callable[[object], CarrierGatewayPort]


class GatewayRegistry:
    """
    Registry for carrier gateway adapters.

    Usage:
        GatewayRegistry.register("http", HttpCarrierGateway.from_settings)
        gateway = GatewayRegistry.build("http", settings)

    Registration happens at import time in this module; lookups are read-only.
    """

    _factories: Dict[str, GatewayFactory] = {}

    @classmethod
    def register(cls, name: str, factory: GatewayFactory) -> None:
        """
        Register a gateway factory.

        Raises:
            ValueError: If name is empty
            RuntimeError: If name is already registered
        """
        if not name or not name.strip():
            raise ValueError("gateway name cannot be empty")

        key = name.strip().lower()
        if key in cls._factories:
            raise RuntimeError(
                f"Gateway '{name}' is already registered. "
                f"Use unregister() first if you need to replace it."
            )
        cls._factories[key] = factory

    @classmethod
    def build(cls, name: str, settings) -> CarrierGatewayPort:
        """
        Build a gateway instance.

        Raises:
            ValueError: If name is not registered
        """
        key = (name or "").strip().lower()
        if key not in cls._factories:
            raise ValueError(
                f"Gateway '{name}' not registered. "
                f"Available: {sorted(cls._factories)}"
            )
        return cls._factories[key](settings)

    @classmethod
    def unregister(cls, name: str) -> None:
        cls._factories.pop((name or "").strip().lower(), None)

    @classmethod
    def is_registered(cls, name: str) -> bool:
        return (name or "").strip().lower() in cls._factories


GatewayRegistry.register("http", HttpCarrierGateway.from_settings)
GatewayRegistry.register("mock", lambda settings: MockCarrierGateway())
