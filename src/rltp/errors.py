from __future__ import annotations


class TransferError(Exception):
    """Base class for everything that ends a session early."""


class ProtocolViolation(TransferError):
    """The peer broke the one-packet-in-flight invariant (or sent something unusable)."""


class ItemError(TransferError):
    """A configured item cannot be read or does not fit the wire format."""


class RetryLimitExceeded(TransferError):
    pass


class IntegrityError(TransferError):
    pass
