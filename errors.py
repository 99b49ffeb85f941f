import logging

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base for every error the ledger core raises to its callers."""


class ValidationError(LedgerError):
    pass


class SplitError(ValidationError):
    pass


class ConflictError(LedgerError):
    pass


class NotFoundError(LedgerError):
    pass


class InvariantError(RuntimeError):
    """A broken core contract. Never shown to users."""

    def __init__(self, message: str):
        logger.critical("Invariant violated: %s", message)
        super().__init__(message)
