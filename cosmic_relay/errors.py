"""Exception hierarchy shared by the relay core and its adapters."""


class RelayError(Exception):
    """Base class for all cosmic-relay errors."""


class ConfigError(RelayError):
    """A source definition is invalid. Fatal at boot."""


class ExtractionError(RelayError):
    """Navigation, selector or browser failure during a crawl."""


class ValidationError(RelayError):
    """Normalized fields do not match the declared output schema."""


class PersistenceError(RelayError):
    """A store read or write failed."""


class SourceNotFoundError(RelayError):
    """The source id is unknown or the source is disabled."""


class DataNotFoundError(RelayError):
    """No data point exists inside the requested window."""


class InvalidRangeError(RelayError):
    """A history query has unparseable bounds or from > to."""


class SubscriptionLimitError(RelayError):
    """The subscription table is full."""


class PreviewNotAllowedError(RelayError):
    """Preview crawls are disabled in this environment."""
