"""
Inventory module.

Handles the stock movement ledger, per-location balances and dashboard figures.
"""

from .router import router  # noqa: F401
from . import models  # noqa: F401
