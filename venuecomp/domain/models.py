# domain/models.py - Core entities of the check-in model
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from abc import ABC, abstractmethod

import numpy as np


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float


@dataclass(frozen=True)
class Parameters:
    """Regularization weights, fixed for the lifetime of a model"""
    lambda_u: float = 0.01
    lambda_v: float = 0.01
    lambda_f: float = 0.01


@dataclass
class User:
    id: str
    checkins: Dict[str, int]  # venue id -> number of check-ins
    factors: np.ndarray
    friends: Optional[List[str]] = None

    def __post_init__(self):
        for venue_id, count in self.checkins.items():
            if count < 0:
                raise ValueError(f"User {self.id} has a negative check-in count at venue {venue_id}")

    def checkins_at(self, venue_id: str) -> int:
        """Number of check-ins at a venue, zero when the user never went there"""
        return self.checkins.get(venue_id, 0)

    @property
    def venue_ids(self) -> List[str]:
        return [venue_id for venue_id, count in self.checkins.items() if count > 0]


@dataclass
class Venue:
    id: str
    location: Coordinate
    factors: np.ndarray
    total_checkins: int = 0
    visitors: List[str] = field(default_factory=list)
    neighbors: Tuple[str, ...] = ()
    _area_id: Optional[int] = field(default=None, repr=False)

    @property
    def area_id(self) -> Optional[int]:
        return self._area_id

    def assign_area(self, area_id: int) -> None:
        """Set the area once; later assignments are ignored"""
        if self._area_id is None:
            self._area_id = area_id


@dataclass
class Area:
    id: int
    cell: Tuple[int, int]  # (row, column) in the grid
    venue_ids: Tuple[str, ...]
    location: Coordinate


# Read interface over factor vectors (implemented by snapshots and live views)
class FactorView(ABC):
    @abstractmethod
    def user(self, user_id: str) -> np.ndarray:
        """Factor vector of a user"""
        pass

    @abstractmethod
    def venue(self, venue_id: str) -> np.ndarray:
        """Factor vector of a venue"""
        pass

    @abstractmethod
    def area_sum(self, area_id: int) -> np.ndarray:
        """Elementwise sum of the factor vectors of every venue in an area"""
        pass

    @abstractmethod
    def neighbor_matrix(self, venue_id: str) -> np.ndarray:
        """Neighbor factor vectors of a venue stacked as rows (n x k)"""
        pass
