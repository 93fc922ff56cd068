"""Collaborator Interface Protocols.

Narrow interfaces to the external document store and the order
placement service. All entity access in the copy trading and fraud
detection services goes through these.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable


@runtime_checkable
class Store(Protocol):
    """Named-function access to the external document database."""

    def query(self, name: str, args: dict[str, Any]) -> Any:
        """Run a read function, e.g. ``copy_subscriptions:get``."""
        ...

    def mutation(self, name: str, args: dict[str, Any]) -> Any:
        """Run a write function, e.g. ``copy_trades:update``."""
        ...


@dataclass
class OrderRequest:
    """Order placed on behalf of a copier."""

    user_id: str
    symbol: str
    side: str
    quantity: float
    type: str = "market"
    price: Optional[float] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class OrderService(Protocol):
    """Order placement on the trading backend."""

    def create_order(self, request: OrderRequest) -> dict[str, Any]:
        """Place an order.

        Returns:
            Dict with at least ``id`` and ``status``.
        """
        ...
