class DaoError(Exception):
    """Base class for every error raised by the DAO layer."""


class MetadataError(DaoError):
    """Collection metadata is missing or blank on a domain type."""


class MappingError(DaoError):
    """An object could not be turned into a record, or back."""


class ConditionError(DaoError):
    """A condition tree cannot be translated to a native document."""


class ClosedResourceError(DaoError):
    """An operation was attempted on a closed DAO or result set."""


class ConfigurationError(DaoError):
    """Server addresses or settings are invalid."""
