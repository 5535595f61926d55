"""Error types raised inside the resolver"""

from typing import List


class ResolverError(Exception):
    """Base class for resolver errors"""


class RuleTableError(ResolverError):
    """The intent rule table could not be loaded or parsed"""


class ExternalClassifierError(ResolverError):
    """The external classification service failed or returned garbage"""


class CircuitOpenError(ExternalClassifierError):
    """Calls are short-circuited while the breaker is open"""


class MemoryStorageError(ResolverError):
    """Durable read or write of a user memory blob failed"""


class MemoryValidationError(ResolverError, ValueError):
    """A memory update is missing required fields or has malformed values"""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__(f"Memory record validation failed: {', '.join(errors)}")
