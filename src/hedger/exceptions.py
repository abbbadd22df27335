"""Custom exceptions and error classification for the hedge reconciler.

Exchange and storage calls report failures as return values (see
``OrderResult`` and ``Exchange.get_last_error``). The exceptions below cover
programming and configuration errors that should never be silently skipped.
"""

from collections.abc import Iterable


class HedgerError(Exception):
    """Base exception for all reconciler errors."""


class InvalidPriceError(HedgerError):
    """Raised when a quantity is quantized against a zero or negative price."""


class ConfigurationError(HedgerError):
    """Raised when settings are inconsistent (e.g. periods/weights mismatch)."""


class StorageError(HedgerError):
    """Raised when the store is used before it is connected."""


def is_unsupported_symbol_error(message: str, patterns: Iterable[str]) -> bool:
    """Return True if an exchange error message means the symbol is not tradable.

    Matching is a case-insensitive substring test against each pattern.
    An empty message never matches.
    """
    if not message:
        return False
    lowered = message.lower()
    return any(pattern.lower() in lowered for pattern in patterns if pattern)
