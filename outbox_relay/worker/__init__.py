"""
Worker module.
Contains the job handler registry and the queue worker (``worker.main``).
"""

from outbox_relay.worker.handlers import (
    execute_job,
    get_handler,
    list_handlers,
    register_handler,
)

__all__ = [
    "register_handler",
    "get_handler",
    "list_handlers",
    "execute_job",
]
