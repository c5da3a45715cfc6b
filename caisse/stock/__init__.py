from .ledger import StockLedger, Availability, CommitResult, aggregate_demand
from .store import SupabaseStockStore, MemoryStockStore

__all__ = [
    "StockLedger",
    "Availability",
    "CommitResult",
    "aggregate_demand",
    "SupabaseStockStore",
    "MemoryStockStore",
]
