"""
HTTP routers.

    public: customer booking page and guided chat (no auth)
    staff:  per-branch schedule, catalog and appointments
    owner:  statistics and branch removal
"""

from .owner import router as owner_router
from .public import router as public_router
from .staff import router as staff_router

__all__ = ["owner_router", "public_router", "staff_router"]
