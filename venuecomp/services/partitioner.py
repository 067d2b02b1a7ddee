# services/partitioner.py - Grid partitioning of venues into areas and neighbor sets
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Mapping, Tuple

from venuecomp.domain.models import Area, Coordinate
from venuecomp.services.geometry import Grid

logger = logging.getLogger(__name__)


@dataclass
class Partition:
    grid: Grid
    areas: Dict[int, Area]
    venue_area: Dict[str, int]  # venue id -> area id
    neighbors: Dict[str, Tuple[str, ...]]  # venue id -> neighbor venue ids


class SpatialPartitioner:
    """
    Assigns every venue to one grid cell (its area) and collects, for each venue,
    the venues of its own cell and of the 8 surrounding cells as neighbors.
    """

    def __init__(self, scale: float, round_places: int = 1, average_location: bool = True):
        if scale <= 0:
            raise ValueError(f"Grid scale must be positive, got {scale}")
        self.scale = scale
        self.round_places = round_places
        self.average_location = average_location

    def partition(self, locations: Mapping[str, Coordinate]) -> Partition:
        if not locations:
            raise ValueError("Cannot partition an empty venue set")

        grid = Grid.covering(locations.values(), self.scale, self.round_places)
        cover = grid.bounds
        logger.info(f"Cover rectangle {cover} ({grid.num_lat} x {grid.num_lng} cells, {cover.area_km2():.1f} km2)")

        # 1. Bucket venues into occupied cells
        cells: Dict[Tuple[int, int], List[str]] = defaultdict(list)
        for venue_id in sorted(locations):
            cells[grid.cell_of(locations[venue_id])].append(venue_id)

        # 2. Areas exist only for occupied cells
        areas: Dict[int, Area] = {}
        venue_area: Dict[str, int] = {}
        for cell in sorted(cells):
            members = tuple(cells[cell])
            area_id = grid.area_id(cell)
            areas[area_id] = Area(
                id=area_id,
                cell=cell,
                venue_ids=members,
                location=self._area_location(grid, cell, members, locations),
            )
            for venue_id in members:
                venue_area[venue_id] = area_id

        # 3. Neighbors: same cell (minus the venue) plus all occupied adjacent cells
        neighbors: Dict[str, Tuple[str, ...]] = {}
        for cell, members in cells.items():
            surrounding = []
            for adjacent in grid.adjacent_cells(cell):
                surrounding.extend(cells.get(adjacent, ()))
            for venue_id in members:
                same_cell = [other for other in members if other != venue_id]
                neighbors[venue_id] = tuple(same_cell + surrounding)

        logger.info(f"Partitioned {len(locations)} venues into {len(areas)} areas")
        return Partition(grid=grid, areas=areas, venue_area=venue_area, neighbors=neighbors)

    def _area_location(self, grid: Grid, cell: Tuple[int, int], members: Tuple[str, ...],
                       locations: Mapping[str, Coordinate]) -> Coordinate:
        if self.average_location:
            lat = sum(locations[v].lat for v in members) / len(members)
            lng = sum(locations[v].lng for v in members) / len(members)
            return Coordinate(lat, lng)
        return grid.cell_rectangle(cell).center
