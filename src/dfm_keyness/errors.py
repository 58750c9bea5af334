class ValidationError(ValueError):
    """Bad input to an aggregation or keyness call; nothing is returned."""


class InvalidMatrix(ValidationError):
    pass


class DimensionMismatch(ValidationError):
    pass


class InvalidShape(ValidationError):
    pass


class InsufficientDocuments(ValidationError):
    pass


class TargetNotFound(ValidationError):
    pass


class IndexOutOfRange(ValidationError):
    pass


class LengthMismatch(ValidationError):
    pass


class EmptyGroup(ValidationError):
    pass


class InvalidOption(ValidationError):
    pass


class ConfigurationWarning(UserWarning):
    """A requested option has no effect for the chosen measure."""
