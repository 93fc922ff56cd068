"""External collaborators: document store and order placement."""

from src.collaborators.interface import OrderRequest, OrderService, Store
from src.collaborators.memory import InMemoryStore, PaperOrderService

__all__ = [
    "Store",
    "OrderService",
    "OrderRequest",
    "InMemoryStore",
    "PaperOrderService",
]
