"""
Calico Accountant Exceptions

Custom exceptions for the accountant. Whether an error is fatal, aborts one
scrape round, or only skips a single line is decided by its type.
"""


class AccountantError(Exception):
    """Base exception for all accountant errors."""

    def __init__(self, message: str, reason: str = None):
        super().__init__(message)
        self.reason = reason or message


class ConfigurationError(AccountantError):
    """Raised when process configuration cannot be used. Fatal at startup."""
    pass


class NodeNameError(ConfigurationError):
    """Raised when no node identity can be determined. Fatal at startup."""
    pass


class UnsupportedGrammarError(AccountantError):
    """
    Raised for a chain-type or policy-direction token outside the known
    Calico naming scheme. Fatal: the counter cannot be tagged safely.
    """

    def __init__(self, kind: str, token: str):
        super().__init__(f"Unsupported {kind}: {token!r}")
        self.kind = kind
        self.token = token


class DumpError(AccountantError):
    """Raised when iptables-save cannot be run or read. Aborts one scrape round."""
    pass


class RecordBuildError(AccountantError):
    """Raised when an accounting record would be inconsistent. Skips one line."""
    pass


class FeedDecodeError(AccountantError):
    """Raised for a malformed sync feed event. Skips one event."""
    pass
