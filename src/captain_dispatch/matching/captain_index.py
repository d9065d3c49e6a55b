"""H3 cell index for captain locations.

Each captain row carries the H3 cell of its last ping; a radius search turns
into an IN query over the cells of a k-ring disk, followed by an exact
haversine check.
"""

import math
from functools import lru_cache

import h3


class CaptainCellIndex:
    def __init__(self, h3_resolution: int = 7):
        self._h3_resolution = h3_resolution

    @property
    def resolution(self) -> int:
        return self._h3_resolution

    def cell_for(self, lat: float, lng: float) -> str:
        return h3.latlng_to_cell(lat, lng, self._h3_resolution)

    def cells_within(self, lat: float, lng: float, radius_km: float) -> set[str]:
        """Cells of a disk that fully covers the radius around the point."""
        center_cell = self.cell_for(lat, lng)
        k = self.rings_for_radius(radius_km)
        return set(h3.grid_disk(center_cell, k))

    def rings_for_radius(self, radius_km: float) -> int:
        edge_km = _edge_length_km(self._h3_resolution)
        # One extra ring covers the offset of the point inside its own cell
        return max(1, math.ceil(radius_km / edge_km) + 1)


@lru_cache(maxsize=16)
def _edge_length_km(resolution: int) -> float:
    return float(h3.average_hexagon_edge_length(resolution, unit="km"))
