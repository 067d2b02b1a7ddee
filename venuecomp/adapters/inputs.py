# adapters/inputs.py - Entity tables from the loaders' in-memory mappings
from collections import defaultdict
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from venuecomp.domain.models import Coordinate, User, Venue
from venuecomp.services.partitioner import Partition
from venuecomp.services.store import random_factors

CheckinTable = Mapping[str, Mapping[str, int]]  # user id -> venue id -> check-ins
LocationTable = Mapping[str, Union[Coordinate, Tuple[float, float]]]
FriendTable = Mapping[str, Sequence[str]]


def as_coordinate(location: Union[Coordinate, Tuple[float, float]]) -> Coordinate:
    if isinstance(location, Coordinate):
        return location
    lat, lng = location
    return Coordinate(float(lat), float(lng))


def count_checkins(checkins: CheckinTable) -> Dict[str, int]:
    """Total check-ins per venue over all users"""
    result: Dict[str, int] = defaultdict(int)
    for venue_counts in checkins.values():
        for venue_id, count in venue_counts.items():
            result[venue_id] += count
    return dict(result)


def collect_visitors(checkins: CheckinTable) -> Dict[str, List[str]]:
    """Users with at least one check-in, per venue, in user table order"""
    result: Dict[str, List[str]] = defaultdict(list)
    for user_id, venue_counts in checkins.items():
        for venue_id, count in venue_counts.items():
            if count > 0:
                result[venue_id].append(user_id)
    return dict(result)


def build_users(checkins: CheckinTable, friendships: Optional[FriendTable], k: int,
                rng: np.random.Generator, low: float, high: float) -> Dict[str, User]:
    users = {}
    for user_id, venue_counts in checkins.items():
        friends = None
        if friendships is not None:
            friends = list(friendships.get(user_id, []))
        users[user_id] = User(
            id=user_id,
            checkins=dict(venue_counts),
            factors=random_factors(rng, k, low, high),
            friends=friends,
        )
    return users


def build_venues(locations: LocationTable, partition: Partition, checkins: CheckinTable, k: int,
                 rng: np.random.Generator, low: float, high: float) -> Dict[str, Venue]:
    totals = count_checkins(checkins)
    visitors = collect_visitors(checkins)

    venues = {}
    for venue_id in sorted(locations):
        venue = Venue(
            id=venue_id,
            location=as_coordinate(locations[venue_id]),
            factors=random_factors(rng, k, low, high),
            total_checkins=totals.get(venue_id, 0),
            visitors=visitors.get(venue_id, []),
            neighbors=partition.neighbors.get(venue_id, ()),
        )
        if venue_id in partition.venue_area:
            venue.assign_area(partition.venue_area[venue_id])
        venues[venue_id] = venue
    return venues
