"""
Request-scoped access to the components built at startup.
"""

from fastapi import HTTPException, Request, status

from outbox_relay.constants import QueueName
from outbox_relay.outbox.processor import OutboxProcessor
from outbox_relay.queue.job_queue import JobQueue
from outbox_relay.worker.main import QueueWorker


def get_processor(request: Request) -> OutboxProcessor:
    return request.app.state.processor


def get_job_queue(request: Request) -> JobQueue:
    return request.app.state.job_queue


def resolve_queue(queue: str) -> str:
    """Map a path segment to a known queue name, 404 otherwise."""
    try:
        return QueueName(queue).value
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown queue: {queue}",
        )


def get_queue_worker(request: Request, queue: str) -> QueueWorker:
    """One worker per queue, created on first use and shared by later requests."""
    workers: dict[str, QueueWorker] = request.app.state.workers
    name = resolve_queue(queue)
    if name not in workers:
        workers[name] = QueueWorker(
            request.app.state.job_queue,
            request.app.state.lock,
            queue=name,
        )
    return workers[name]
