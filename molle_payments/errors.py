class ReconciliationError(Exception):
    """Base class for failures while applying a gateway event."""

    def __init__(self, message, order_id=None):
        super().__init__(message)
        self.order_id = order_id


class TransientPersistenceFailure(ReconciliationError):
    """The database could not be read or written. The gateway should retry."""


class FatalInconsistency(ReconciliationError):
    """Money was (or would be) collected without its dependent record being updated.

    Needs an operator; retrying the delivery alone will not fix it.
    """
