"""
API route modules.

Each module defines routes for one planning area.
"""

from routes.products import router as products_router
from routes.ledger import router as ledger_router
from routes.scheduler import router as scheduler_router
from routes.master import router as master_router

__all__ = [
    "products_router",
    "ledger_router",
    "scheduler_router",
    "master_router",
]
