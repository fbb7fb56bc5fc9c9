"""
Catalog module.

Products, storage locations and the users who act on the ledger.
"""

from .router import router  # noqa: F401
from . import models  # noqa: F401
