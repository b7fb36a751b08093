"""
Error Types for STRATLAB
"""
from typing import List, Optional


class StratlabError(Exception):
    """Base class for every error raised by stratlab"""


class ConfigurationError(StratlabError, ValueError):
    """Strategy or indicator configuration the caller has to fix before evaluating or saving"""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        super().__init__(message)
        self.problems = problems or [message]


class BarSeriesError(StratlabError, ValueError):
    """Bar input that breaks the ascending, duplicate-free ordering"""


class StrategyNotFoundError(StratlabError, LookupError):
    """No strategy stored under the requested id"""


class PermissionDeniedError(StratlabError):
    """Caller is not allowed to read or modify the strategy"""


class CollaboratorError(StratlabError):
    """Failure in an external collaborator; callers may retry"""

    retryable = True


class StoreUnavailableError(CollaboratorError):
    """Document store could not be reached"""


class MarketDataError(CollaboratorError):
    """Historical bars could not be fetched or read"""
