"""Exception types raised by the array preparation pipeline."""


class ArrayPrepError(ValueError):
    """Base class for fatal pipeline input problems."""


class ConfigurationError(ArrayPrepError):
    """Cohort table, sample mapping, or settings are unusable.

    Raised before any filtering starts.
    """


class DataShapeError(ArrayPrepError):
    """Input matrices do not have the shape a stage requires."""
