# services/store.py - Entity tables and read views over factor vectors
from typing import Dict, Iterable, List, Sequence

import numpy as np

from venuecomp.domain.errors import InconsistentStructureError, MissingEntityError
from venuecomp.domain.models import Area, FactorView, User, Venue
from venuecomp.services.cache import OnceCache


def freeze_factors(vector: Iterable[float], k: int) -> np.ndarray:
    """Copy a vector into a read-only float array of length k"""
    factors = np.array(vector, dtype=float).reshape(-1)
    if len(factors) != k:
        raise ValueError(f"Factor vector must have {k} elements, got {len(factors)}")
    if not np.all(np.isfinite(factors)):
        raise ValueError("Factor vector must contain only finite values")
    factors.setflags(write=False)
    return factors


def random_factors(rng: np.random.Generator, k: int, low: float, high: float) -> np.ndarray:
    """Small positive random factors, uniform in [low, high)"""
    return freeze_factors(rng.uniform(low, high, size=k), k)


class EntityStore:
    """Users, venues and areas of one model; factor vectors are the only mutable part"""

    def __init__(self, users: Dict[str, User], venues: Dict[str, Venue], areas: Dict[int, Area], k: int):
        self.users = users
        self.venues = venues
        self.areas = areas
        self.k = k

        for user in users.values():
            user.factors = freeze_factors(user.factors, k)
        for venue in venues.values():
            venue.factors = freeze_factors(venue.factors, k)

        self.validate()

        # Friend lists restricted to known users, plus the reverse direction
        self.friends_of: Dict[str, List[str]] = {}
        self.followers_of: Dict[str, List[str]] = {user_id: [] for user_id in users}
        for user_id, user in users.items():
            resolved = [f for f in (user.friends or []) if f in users]
            self.friends_of[user_id] = resolved
            for friend_id in resolved:
                self.followers_of[friend_id].append(user_id)
        self.num_friend_pairs = sum(len(friends) for friends in self.friends_of.values())

    @property
    def user_ids(self) -> List[str]:
        return list(self.users)

    @property
    def venue_ids(self) -> List[str]:
        return list(self.venues)

    @property
    def has_friendship_source(self) -> bool:
        return any(user.friends is not None for user in self.users.values())

    def validate(self) -> None:
        """Fail fast on malformed partitioning or check-in tables"""
        for venue_id, venue in self.venues.items():
            if venue.area_id is None:
                raise MissingEntityError(f"Venue {venue_id} has no area")
            area = self.areas.get(venue.area_id)
            if area is None:
                raise MissingEntityError(f"Area {venue.area_id} of venue {venue_id} does not exist")
            if venue_id not in area.venue_ids:
                raise InconsistentStructureError(f"Venue {venue_id} is not a member of its area {area.id}")

            for neighbor_id in venue.neighbors:
                if neighbor_id == venue_id:
                    raise InconsistentStructureError(f"Venue {venue_id} is its own neighbor")
                neighbor = self.venues.get(neighbor_id)
                if neighbor is None:
                    raise MissingEntityError(f"Neighbor {neighbor_id} of venue {venue_id} does not exist")
                if venue_id not in neighbor.neighbors:
                    raise InconsistentStructureError(
                        f"Neighbor relation is not symmetric: {neighbor_id} lacks {venue_id}"
                    )

            for user_id in venue.visitors:
                if user_id not in self.users:
                    raise MissingEntityError(f"Visitor {user_id} of venue {venue_id} does not exist")

        members = 0
        for area_id, area in self.areas.items():
            for venue_id in area.venue_ids:
                venue = self.venues.get(venue_id)
                if venue is None:
                    raise MissingEntityError(f"Member {venue_id} of area {area_id} does not exist")
                if venue.area_id != area_id:
                    raise InconsistentStructureError(
                        f"Venue {venue_id} is listed in area {area_id} but belongs to area {venue.area_id}"
                    )
            members += len(area.venue_ids)
        if members != len(self.venues):
            raise InconsistentStructureError("Areas do not partition the venue set")

        visitor_sets = {}
        for venue_id, venue in self.venues.items():
            visitor_sets[venue_id] = set(venue.visitors)
            if len(visitor_sets[venue_id]) != len(venue.visitors):
                raise InconsistentStructureError(f"Venue {venue_id} lists a visitor twice")

        for user_id, user in self.users.items():
            for venue_id in user.venue_ids:
                if venue_id not in self.venues:
                    raise MissingEntityError(f"User {user_id} checked in at unknown venue {venue_id}")
                if user_id not in visitor_sets[venue_id]:
                    raise InconsistentStructureError(
                        f"User {user_id} checked in at venue {venue_id} but is not among its visitors"
                    )

    def set_user_factors(self, user_id: str, vector: Sequence[float]) -> None:
        self.get_user(user_id).factors = freeze_factors(vector, self.k)

    def set_venue_factors(self, venue_id: str, vector: Sequence[float]) -> None:
        self.get_venue(venue_id).factors = freeze_factors(vector, self.k)

    def get_user(self, user_id: str) -> User:
        user = self.users.get(user_id)
        if user is None:
            raise MissingEntityError(f"User {user_id} does not exist")
        return user

    def get_venue(self, venue_id: str) -> Venue:
        venue = self.venues.get(venue_id)
        if venue is None:
            raise MissingEntityError(f"Venue {venue_id} does not exist")
        return venue

    def snapshot(self) -> "FactorSnapshot":
        return FactorSnapshot(self)

    def live_view(self) -> "LiveFactors":
        return LiveFactors(self)


class FactorSnapshot(FactorView):
    """
    Factor vectors frozen at one instant. Area sums and neighbor matrices are
    derived once per snapshot and shared by every worker reading it.
    """

    def __init__(self, store: EntityStore):
        self.store = store
        self._users = {user_id: user.factors for user_id, user in store.users.items()}
        self._venues = {venue_id: venue.factors for venue_id, venue in store.venues.items()}
        self._area_sums: OnceCache[int, np.ndarray] = OnceCache()
        self._neighbor_matrices: OnceCache[str, np.ndarray] = OnceCache()

    def user(self, user_id: str) -> np.ndarray:
        return self._users[user_id]

    def venue(self, venue_id: str) -> np.ndarray:
        return self._venues[venue_id]

    def area_sum(self, area_id: int) -> np.ndarray:
        return self._area_sums.get_or_compute(area_id, self._compute_area_sum)

    def neighbor_matrix(self, venue_id: str) -> np.ndarray:
        return self._neighbor_matrices.get_or_compute(venue_id, self._compute_neighbor_matrix)

    def _compute_area_sum(self, area_id: int) -> np.ndarray:
        area = self.store.areas[area_id]
        total = np.sum([self._venues[v] for v in area.venue_ids], axis=0)
        total.setflags(write=False)
        return total

    def _compute_neighbor_matrix(self, venue_id: str) -> np.ndarray:
        neighbors = self.store.venues[venue_id].neighbors
        if not neighbors:
            matrix = np.empty((0, self.store.k))
        else:
            matrix = np.array([self._venues[n] for n in neighbors])
        matrix.setflags(write=False)
        return matrix


class LiveFactors(FactorView):
    """Reads the current factors on every call; used where updates happen pair by pair"""

    def __init__(self, store: EntityStore):
        self.store = store

    def user(self, user_id: str) -> np.ndarray:
        return self.store.users[user_id].factors

    def venue(self, venue_id: str) -> np.ndarray:
        return self.store.venues[venue_id].factors

    def area_sum(self, area_id: int) -> np.ndarray:
        area = self.store.areas[area_id]
        return np.sum([self.store.venues[v].factors for v in area.venue_ids], axis=0)

    def neighbor_matrix(self, venue_id: str) -> np.ndarray:
        neighbors = self.store.venues[venue_id].neighbors
        if not neighbors:
            return np.empty((0, self.store.k))
        return np.array([self.store.venues[n].factors for n in neighbors])
