"""
Persisted key layout for the KV-backed queue, locks and dedup markers.
"""

from outbox_relay.config import get_settings
from outbox_relay.kv.store import LiveKeys


class QueueKeys:
    """
    Builds namespaced KV keys.

    Layout::

        {env}:q:{queue}:ready
        {env}:q:{queue}:scheduled
        {env}:q:{queue}:deadletter
        {env}:q:{queue}:ids              (hash: message id -> live entry)
        {env}:q:{queue}:seen:{type}:{fingerprint}
        {env}:q:{queue}:done:{type}:{fingerprint}
        {env}:lock:{name}
    """

    def __init__(self, namespace: str | None = None):
        self.namespace = namespace or get_settings().app_env

    def ready(self, queue: str) -> str:
        return f"{self.namespace}:q:{queue}:ready"

    def scheduled(self, queue: str) -> str:
        return f"{self.namespace}:q:{queue}:scheduled"

    def dead(self, queue: str) -> str:
        return f"{self.namespace}:q:{queue}:deadletter"

    def index(self, queue: str) -> str:
        return f"{self.namespace}:q:{queue}:ids"

    def live(self, queue: str) -> LiveKeys:
        return LiveKeys(self.index(queue), self.scheduled(queue), self.ready(queue))

    def seen(self, queue: str, job_type: str, fingerprint: str) -> str:
        return f"{self.namespace}:q:{queue}:seen:{job_type}:{fingerprint}"

    def done(self, queue: str, job_type: str, fingerprint: str) -> str:
        return f"{self.namespace}:q:{queue}:done:{job_type}:{fingerprint}"

    def lock(self, name: str) -> str:
        return f"{self.namespace}:lock:{name}"
