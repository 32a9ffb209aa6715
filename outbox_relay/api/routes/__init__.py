"""
API routes module.
"""

from outbox_relay.api.routes.health import router as health_router
from outbox_relay.api.routes.outbox import router as outbox_router
from outbox_relay.api.routes.queues import router as queues_router

__all__ = ["health_router", "outbox_router", "queues_router"]
