"""Domain models and balancing logic for the ledger engine.

This package contains the in-memory (Pydantic) directive model together with
the booking, closing and split passes that operate on it. They are independent
from file formats so that the engine can be tested without any I/O.
"""

__all__ = [
    "bag",
    "balance_check",
    "booking",
    "closing",
    "ledger",
    "split",
]
