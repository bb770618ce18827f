"""Outcome object returned by webhook event handlers."""
from payhook.models.sync_log import SyncStatus


class HandlerResult:
    """
    What a handler did with one event.

    Attributes:
        status: SyncStatus recorded in the inbound audit entry
        message: Human-readable summary
        payload: Optional snapshot kept on the audit entry
        local_id: Our record touched by the handler, if any
        side_effects: OutboxMessage rows queued in the same transaction
    """

    def __init__(self, status, message, payload=None, local_id=None, side_effects=None):
        self.status = SyncStatus(status)
        self.message = message
        self.payload = payload
        self.local_id = local_id
        self.side_effects = list(side_effects or [])

    @classmethod
    def success(cls, message, **kwargs):
        return cls(SyncStatus.SUCCESS, message, **kwargs)

    @classmethod
    def skipped(cls, message, **kwargs):
        return cls(SyncStatus.SKIPPED, message, **kwargs)

    @classmethod
    def failed(cls, message, **kwargs):
        return cls(SyncStatus.FAILED, message, **kwargs)

    def __repr__(self):
        return f"<HandlerResult {self.status.value}: {self.message}>"
