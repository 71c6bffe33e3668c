"""
Serverless PG Exceptions

This module defines custom exceptions for the serverless_pg package
to provide clear error handling and reporting.
"""


class ServerlessPgError(Exception):
    """Base exception for all serverless_pg errors"""
    pass


class ConfigurationError(ServerlessPgError):
    """Raised when configuration is invalid or missing"""
    pass


class ClientNotConnectedError(ServerlessPgError):
    """Raised when an operation needs a live connection and none exists"""
    pass


class QueryError(ServerlessPgError):
    """
    Raised when a query issued through the governed connection fails.

    The underlying driver exception is chained as ``__cause__``. ``kind`` carries
    the structured classification of the driver error so that callers can
    tell a terminated backend apart from an ordinary SQL failure.
    """

    def __init__(self, message: str, kind=None):
        super().__init__(message)
        self.kind = kind


class CapacityResolutionError(QueryError):
    """Raised when the server reports an unusable max_connections value"""
    pass
