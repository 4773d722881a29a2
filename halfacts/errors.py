"""Exception hierarchy for the HAL fact extraction engine."""


class HalFactsError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(HalFactsError):
    """A required option is missing; raised before any analysis starts."""

    def __init__(self, option: str, message: str = ""):
        self.option = option
        super().__init__(message or f"missing required option {option}")


class CacheIOError(HalFactsError):
    """A cache file could not be read or written."""

    def __init__(self, path: str, cause: Exception):
        self.path = path
        self.cause = cause
        super().__init__(f"{path}: {cause}")


class MalformedCacheError(HalFactsError):
    """A cache file exists but does not hold the expected records."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")
