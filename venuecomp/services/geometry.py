# services/geometry.py - Great-circle distance and the spatial grid
import math
from dataclasses import dataclass
from typing import Iterable, List, Tuple

from venuecomp.domain.models import Coordinate

# Earth radius in meters
EARTH_RADIUS_M = 6371000


def calculate_distance(p1: Coordinate, p2: Coordinate) -> float:
    """Calculate great circle distance in meters using Haversine formula"""
    # Convert to radians
    lat1, lon1, lat2, lon2 = map(math.radians, [p1.lat, p1.lng, p2.lat, p2.lng])

    # Haversine formula
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = math.sin(dlat/2)**2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon/2)**2
    c = 2 * math.asin(min(1.0, math.sqrt(a)))

    return c * EARTH_RADIUS_M


def round_up(value: float, places: int) -> float:
    """Round up to the given decimal places, e.g. 11.56 -> 11.6"""
    if places < 0:
        raise ValueError(f"places must be non-negative, got {places}")
    factor = 10 ** places
    return math.ceil(value * factor) / factor


def round_down(value: float, places: int) -> float:
    """Round down to the given decimal places, e.g. 11.56 -> 11.5"""
    if places < 0:
        raise ValueError(f"places must be non-negative, got {places}")
    factor = 10 ** places
    return math.floor(value * factor) / factor


@dataclass(frozen=True)
class Rectangle:
    northeast: Coordinate
    southwest: Coordinate

    @property
    def center(self) -> Coordinate:
        return Coordinate(
            (self.northeast.lat + self.southwest.lat) / 2.0,
            (self.northeast.lng + self.southwest.lng) / 2.0,
        )

    def contains(self, p: Coordinate) -> bool:
        """Half-open test: south/west edges inclusive, north/east edges exclusive"""
        return (self.southwest.lat <= p.lat < self.northeast.lat
                and self.southwest.lng <= p.lng < self.northeast.lng)

    def area_km2(self) -> float:
        """Surface of the rectangle from its great-circle side lengths"""
        corner = Coordinate(self.southwest.lat, self.northeast.lng)
        width = calculate_distance(corner, self.southwest)
        height = calculate_distance(corner, self.northeast)
        return width * height / 1e6

    def __str__(self):
        return f"SW:({self.southwest.lat}, {self.southwest.lng});NE:({self.northeast.lat}, {self.northeast.lng})"


@dataclass(frozen=True)
class Grid:
    """Square cells of `scale` degrees laid over a rounded bounding box"""
    base_lat: float
    base_lng: float
    scale: float
    num_lat: int
    num_lng: int

    @classmethod
    def covering(cls, points: Iterable[Coordinate], scale: float, places: int = 1) -> "Grid":
        points = list(points)
        if not points:
            raise ValueError("Cannot build a grid over zero coordinates")
        if scale <= 0:
            raise ValueError(f"Grid scale must be positive, got {scale}")

        min_lat = min(p.lat for p in points)
        max_lat = max(p.lat for p in points)
        min_lng = min(p.lng for p in points)
        max_lng = max(p.lng for p in points)

        base_lat, base_lng = round_down(min_lat, places), round_down(min_lng, places)
        top_lat, top_lng = round_up(max_lat, places), round_up(max_lng, places)

        # Cell count from the rounded box, widened so points on the upper edge keep a cell
        num_lat = max(int(round((top_lat - base_lat) / scale)),
                      int(math.floor((max_lat - base_lat) / scale)) + 1, 1)
        num_lng = max(int(round((top_lng - base_lng) / scale)),
                      int(math.floor((max_lng - base_lng) / scale)) + 1, 1)
        return cls(base_lat, base_lng, scale, num_lat, num_lng)

    @property
    def bounds(self) -> Rectangle:
        return Rectangle(
            Coordinate(self.base_lat + self.scale * self.num_lat, self.base_lng + self.scale * self.num_lng),
            Coordinate(self.base_lat, self.base_lng),
        )

    def cell_of(self, p: Coordinate) -> Tuple[int, int]:
        i = int(math.floor((p.lat - self.base_lat) / self.scale))
        j = int(math.floor((p.lng - self.base_lng) / self.scale))
        return i, j

    def area_id(self, cell: Tuple[int, int]) -> int:
        i, j = cell
        return i * self.num_lng + j

    def cell_rectangle(self, cell: Tuple[int, int]) -> Rectangle:
        i, j = cell
        return Rectangle(
            Coordinate(self.base_lat + self.scale * (i + 1), self.base_lng + self.scale * (j + 1)),
            Coordinate(self.base_lat + self.scale * i, self.base_lng + self.scale * j),
        )

    def adjacent_cells(self, cell: Tuple[int, int]) -> List[Tuple[int, int]]:
        """Moore neighborhood of a cell inside the grid, the cell itself excluded"""
        i, j = cell
        result = []
        for di in (-1, 0, 1):
            for dj in (-1, 0, 1):
                if di == 0 and dj == 0:
                    continue
                ni, nj = i + di, j + dj
                if 0 <= ni < self.num_lat and 0 <= nj < self.num_lng:
                    result.append((ni, nj))
        return result
