from __future__ import annotations

from admission_gate.api.routes.admin import router as admin_router
from admission_gate.api.routes.health import router as health_router

__all__ = ["admin_router", "health_router"]
