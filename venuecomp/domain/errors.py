# domain/errors.py - Error taxonomy of the check-in model


class ModelError(Exception):
    """Base class for every error raised by the model"""


class ConfigurationError(ModelError):
    """Invalid settings, detected at construction"""


class MissingEntityError(ModelError):
    """A referenced venue, area or user is absent from its table"""


class InconsistentStructureError(ModelError):
    """Neighbor sets or area membership break the partition invariants"""


class NumericInstabilityWarning(RuntimeWarning):
    """A likelihood or gradient term was skipped because it was not finite"""


class NumericInstabilityError(ModelError):
    """Numeric instability recurred beyond the tolerated count"""
