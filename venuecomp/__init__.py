# venuecomp - Area choice and venue competition factor model for check-in data
from venuecomp.config import Settings, settings
from venuecomp.domain.errors import (
    ConfigurationError, InconsistentStructureError, MissingEntityError, ModelError,
    NumericInstabilityError, NumericInstabilityWarning
)
from venuecomp.domain.models import Area, Coordinate, Parameters, User, Venue
from venuecomp.services.optimizer import TrainingMode, TrainingState
from venuecomp.services.partitioner import Partition, SpatialPartitioner
from venuecomp.services.store import EntityStore
from venuecomp.usecases.checkin_model import CheckinModel, build_model

__all__ = [
    "Area", "CheckinModel", "ConfigurationError", "Coordinate", "EntityStore",
    "InconsistentStructureError", "MissingEntityError", "ModelError", "NumericInstabilityError",
    "NumericInstabilityWarning", "Parameters", "Partition", "Settings", "SpatialPartitioner",
    "TrainingMode", "TrainingState", "User", "Venue", "build_model", "settings",
]
