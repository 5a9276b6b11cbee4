"""
Pixel Atmospheric Parameter Interpolation

Propagates the grid point parameters (transmission, upwelled radiance,
downwelled radiance) to every pixel of a Landsat scene:

1. Find the grid point nearest the pixel (haversine distance). The first
   valid pixel of a scanline searches every simulated point; later
   pixels only search the 3x3 neighbourhood of the previous center.
2. Pick the quadrant around the center whose outer points are closest
   on average; its four points form the interpolation cell.
3. Interpolate each cell vertex's parameters to the pixel elevation,
   holding them flat outside the simulated elevation range.
4. Blend the four vertices with inverse-distance (Shepard) weights using
   map coordinates.

Neighbours are derived from lattice row/column, so points off the
lattice or without a MODTRAN run never become cell vertices.
"""

import logging
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from grid_points import (
    DOWNWELLED_RADIANCE,
    NUM_PARAMETERS,
    TRANSMISSION,
    UPWELLED_RADIANCE,
    SolvedParameters,
)

logger = logging.getLogger(__name__)

EQUATORIAL_RADIUS = 6378137.0  # m
NO_DATA_VALUE = -9999.0

# Grid parameter radiances are W cm^-2 sr^-1 um^-1; outputs are W m^-2 sr^-1 um^-1
RADIANCE_SCALE = 10000.0

# (row, col) offsets of the 3x3 neighbourhood; rows increase northward
NEIGHBOR_OFFSETS = {
    'CC': (0, 0),
    'LL': (-1, -1),
    'LC': (0, -1),
    'UL': (1, -1),
    'UC': (1, 0),
    'UR': (1, 1),
    'RC': (0, 1),
    'LR': (-1, 1),
    'DC': (-1, 0),
}

# Quadrant name, its three outer points, and the offset of its lower-left
# vertex from the center. Order matters for tie breaking.
QUADRANTS = (
    ('LL', ('DC', 'LL', 'LC'), (-1, -1)),
    ('UL', ('LC', 'UL', 'UC'), (0, -1)),
    ('UR', ('UC', 'UR', 'RC'), (0, 0)),
    ('LR', ('RC', 'LR', 'DC'), (-1, 0)),
)

# Cell vertex offsets from the cell's lower-left vertex: LL, UL, UR, LR
CELL_OFFSETS = ((0, 0), (1, 0), (1, 1), (0, 1))

# Signature: geolocate(line, samples) -> (longitude, latitude) in degrees
Geolocator = Callable[[int, np.ndarray], Tuple[np.ndarray, np.ndarray]]


def haversine_distance(lon_1, lat_1, lon_2, lat_2):
    """
    Great-circle distance in meters between points given in degrees.

    Accepts scalars or arrays.
    """
    lat_1_radians = np.radians(lat_1)
    lat_2_radians = np.radians(lat_2)

    sin_lon = np.sin(np.radians(np.subtract(lon_2, lon_1)) * 0.5)
    sin_lat = np.sin((lat_2_radians - lat_1_radians) * 0.5)

    h = (sin_lat * sin_lat
         + np.cos(lat_1_radians) * np.cos(lat_2_radians) * sin_lon * sin_lon)

    return EQUATORIAL_RADIUS * 2.0 * np.arcsin(np.sqrt(np.minimum(h, 1.0)))


def nearest_point(
    solved: SolvedParameters,
    longitude: float,
    latitude: float,
    candidates: np.ndarray
) -> int:
    """Index of the candidate grid point nearest (lon, lat)."""
    distances = haversine_distance(solved.lon[candidates],
                                   solved.lat[candidates],
                                   longitude, latitude)
    return int(candidates[np.argmin(distances)])


def first_center_point(
    solved: SolvedParameters,
    longitude: float,
    latitude: float
) -> int:
    """Center point from a search over every simulated grid point."""
    candidates = np.flatnonzero(solved.ran_modtran)
    if len(candidates) == 0:
        raise RuntimeError("No grid points with MODTRAN results to search")
    return nearest_point(solved, longitude, latitude, candidates)


def neighbor_indices(solved: SolvedParameters, center: int) -> dict:
    """
    Indices of the 3x3 neighbourhood around ``center``.

    Positions off the lattice are -1.
    """
    row, col = solved.lattice_position(center)
    return {
        name: solved.index_at(row + dr, col + dc)
        for name, (dr, dc) in NEIGHBOR_OFFSETS.items()
    }


def refine_center_point(
    solved: SolvedParameters,
    longitude: float,
    latitude: float,
    previous: int
) -> int:
    """Center point from the usable 3x3 neighbourhood of ``previous``."""
    candidates = np.array([
        index for index in neighbor_indices(solved, previous).values()
        if solved.is_usable(index)
    ])
    return nearest_point(solved, longitude, latitude, candidates)


class ScanlineSearch:
    """
    Nearest grid point search state owned by one scanline.

    The first lookup seeds the center from every simulated point; each
    later lookup refines from the previous center's neighbourhood, which
    is valid while consecutive pixels are close relative to the grid
    spacing.
    """

    def __init__(self, solved: SolvedParameters):
        self.solved = solved
        self.center: Optional[int] = None

    def reset(self):
        self.center = None

    def center_for(self, longitude: float, latitude: float) -> int:
        if self.center is None:
            self.center = first_center_point(self.solved, longitude, latitude)
        else:
            self.center = refine_center_point(self.solved, longitude,
                                              latitude, self.center)
        return self.center


def select_cell(
    solved: SolvedParameters,
    center: int,
    longitude: float,
    latitude: float
) -> Tuple[int, int, int, int]:
    """
    Choose the interpolation cell around ``center``.

    The quadrant whose three outer points have the smallest mean
    distance wins; on ties the later quadrant in LL, UL, UR, LR order is
    kept. Quadrants with a vertex off the lattice or without MODTRAN
    results are never chosen.

    Returns
    -------
    vertices : tuple of int
        Cell vertex indices: lower-left, upper-left, upper-right, lower-right
    """
    neighbors = neighbor_indices(solved, center)
    distance = {}
    for name, index in neighbors.items():
        if solved.is_usable(index):
            distance[name] = float(haversine_distance(
                solved.lon[index], solved.lat[index], longitude, latitude))
        else:
            distance[name] = np.inf

    row, col = solved.lattice_position(center)
    best = None
    best_distance = np.inf
    for name, outer, (dr, dc) in QUADRANTS:
        vertices = tuple(
            solved.index_at(row + dr + vr, col + dc + vc)
            for vr, vc in CELL_OFFSETS
        )
        if not all(solved.is_usable(v) for v in vertices):
            continue
        avg_distance = sum(distance[p] for p in outer) / 3.0
        if avg_distance <= best_distance:
            best = vertices
            best_distance = avg_distance

    if best is None:
        raise RuntimeError(
            f"No complete interpolation cell around grid point {center} "
            f"(lattice row {row}, col {col})"
        )
    return best


def interpolate_to_height(
    elevations: np.ndarray,
    parameters: np.ndarray,
    height: float
) -> np.ndarray:
    """
    Interpolate one point's parameters to ``height``.

    Parameters
    ----------
    elevations : array-like
        The point's MODTRAN elevations [km], ascending
    parameters : ndarray
        Shape (num_elevations, 3): tau, Lu, Ld at each elevation
    height : float
        Pixel elevation [km]

    Returns
    -------
    at_height : ndarray
        tau, Lu, Ld at the pixel elevation. Values are held at the first
        or last elevation outside the simulated range.
    """
    count = len(elevations)

    # Last elevation strictly below the height
    below = 0
    for elevation in range(count):
        if elevations[elevation] < height:
            below = elevation

    above = below
    if above != count - 1 and not height < elevations[above]:
        above += 1

    if above == below:
        return np.array(parameters[below], dtype=np.float64)

    above_height = elevations[above]
    slope = ((parameters[above] - parameters[below])
             / (above_height - elevations[below]))
    return slope * (height - above_height) + parameters[above]


def interpolate_to_location(
    map_x: np.ndarray,
    map_y: np.ndarray,
    at_height: np.ndarray,
    easting: float,
    northing: float
) -> np.ndarray:
    """
    Shepard (inverse distance) blend of the cell vertices.

    Parameters
    ----------
    map_x, map_y : array-like
        Vertex map coordinates [m]
    at_height : ndarray
        Shape (num_vertices, 3): vertex parameters at the pixel elevation
    easting, northing : float
        Pixel map coordinates [m]

    Returns
    -------
    parameters : ndarray
        tau, Lu, Ld at the pixel. A pixel on a vertex takes its values.
    """
    distance = np.hypot(np.asarray(map_x) - easting,
                        np.asarray(map_y) - northing)

    coincident = np.flatnonzero(distance == 0.0)
    if len(coincident):
        return np.array(at_height[coincident[0]], dtype=np.float64)

    inv_h = 1.0 / distance
    w = inv_h / inv_h.sum()
    return w @ np.asarray(at_height)


def interpolate_pixel(
    solved: SolvedParameters,
    search: ScanlineSearch,
    longitude: float,
    latitude: float,
    easting: float,
    northing: float,
    height_km: float
) -> np.ndarray:
    """tau, Lu, Ld for one pixel, before unit scaling."""
    center = search.center_for(longitude, latitude)
    vertices = select_cell(solved, center, longitude, latitude)

    at_height = np.array([
        interpolate_to_height(solved.elevation[v], solved.parameters[v],
                              height_km)
        for v in vertices
    ])

    index = list(vertices)
    return interpolate_to_location(solved.map_x[index], solved.map_y[index],
                                   at_height, easting, northing)


@dataclass(frozen=True)
class SceneGeometry:
    """Raster size and map coordinates of the upper-left pixel center."""

    lines: int
    samples: int
    ul_x: float
    ul_y: float
    x_pixel_size: float
    y_pixel_size: float

    def northing(self, line: int) -> float:
        return self.ul_y - line * self.y_pixel_size

    def easting(self, sample) -> float:
        return self.ul_x + sample * self.x_pixel_size


class PixelParameters(NamedTuple):
    thermal_radiance: np.ndarray
    transmittance: np.ndarray
    upwelled_radiance: np.ndarray
    downwelled_radiance: np.ndarray


def is_no_data(thermal: np.ndarray) -> np.ndarray:
    return (thermal == NO_DATA_VALUE) | ~np.isfinite(thermal)


def interpolate_scanline(
    solved: SolvedParameters,
    line: int,
    thermal_row: np.ndarray,
    elevation_row: np.ndarray,
    geometry: SceneGeometry,
    geolocate: Geolocator
) -> np.ndarray:
    """
    Atmospheric parameters for every pixel of one scanline.

    Parameters
    ----------
    thermal_row : array-like
        Thermal band values; no-data pixels are skipped entirely
    elevation_row : array-like
        Pixel elevation [m]

    Returns
    -------
    parameters : ndarray
        Shape (samples, 3): tau, Lu, Ld with radiances scaled to
        W m^-2 sr^-1 um^-1, NO_DATA_VALUE where the thermal band has no data
    """
    result = np.full((len(thermal_row), NUM_PARAMETERS), NO_DATA_VALUE)

    valid = np.flatnonzero(~is_no_data(np.asarray(thermal_row)))
    if len(valid) == 0:
        return result

    longitude, latitude = geolocate(line, valid)
    northing = geometry.northing(line)
    search = ScanlineSearch(solved)

    for k, sample in enumerate(valid):
        try:
            parameters = interpolate_pixel(
                solved, search,
                float(longitude[k]), float(latitude[k]),
                geometry.easting(sample), northing,
                float(elevation_row[sample]) * 0.001
            )
        except RuntimeError as e:
            raise RuntimeError(f"Line {line}, sample {sample}: {e}") from e
        result[sample] = parameters

    result[valid, UPWELLED_RADIANCE:] *= RADIANCE_SCALE
    return result


def _interpolate_lines(solved, thermal, elevation, geometry, geolocate,
                       first_line, output, verbose=False):
    for offset in range(thermal.shape[0]):
        line = first_line + offset
        if verbose and line % 1000 == 0:
            logger.info("Processing line %d", line)
        output[offset] = interpolate_scanline(
            solved, line, thermal[offset], elevation[offset],
            geometry, geolocate)


def _process_line_block_worker(args):
    """
    Worker function for parallel scanline processing.

    This is a module-level function to enable pickling for multiprocessing.
    """
    solved, thermal, elevation, geometry, geolocate, first_line = args
    output = np.empty(thermal.shape + (NUM_PARAMETERS,))
    _interpolate_lines(solved, thermal, elevation, geometry, geolocate,
                       first_line, output)
    return output


def line_blocks(lines: int, n_blocks: int) -> Sequence[Tuple[int, int]]:
    """Split ``lines`` into at most ``n_blocks`` contiguous (start, stop) ranges."""
    edges = np.linspace(0, lines, min(n_blocks, lines) + 1).astype(int)
    return [(int(a), int(b)) for a, b in zip(edges[:-1], edges[1:]) if b > a]


def calculate_pixel_parameters(
    solved: SolvedParameters,
    thermal: np.ndarray,
    elevation: np.ndarray,
    geometry: SceneGeometry,
    geolocate: Geolocator,
    n_workers: int = 1,
    verbose: bool = True
) -> PixelParameters:
    """
    Atmospheric parameters for every pixel of the scene.

    Parameters
    ----------
    solved : SolvedParameters
        Grid point parameters from the MODTRAN pass
    thermal : ndarray
        Thermal band radiance (lines, samples); NO_DATA_VALUE marks fill
    elevation : ndarray
        Pixel elevation [m] (lines, samples)
    geometry : SceneGeometry
        Map placement of the raster
    geolocate : callable
        ``geolocate(line, samples) -> (lon, lat)`` in degrees. Must be
        picklable when ``n_workers > 1``.
    n_workers : int
        Number of parallel worker processes. Default: 1 (sequential)
    verbose : bool
        Log progress every 1000 lines. Default: True

    Returns
    -------
    PixelParameters
        Thermal radiance, transmittance, upwelled and downwelled radiance
    """
    thermal = np.asarray(thermal)
    elevation = np.asarray(elevation)
    if thermal.shape != (geometry.lines, geometry.samples):
        raise ValueError(
            f"Thermal band shape {thermal.shape} does not match scene "
            f"{geometry.lines} lines x {geometry.samples} samples"
        )
    if elevation.shape != thermal.shape:
        raise ValueError(
            f"Elevation band shape {elevation.shape} does not match "
            f"thermal band shape {thermal.shape}"
        )

    logger.info("Iterate through all pixels in Landsat scene")
    logger.info("Pixel Count = %d", thermal.size)
    logger.info("Lines = %d, Samples = %d", geometry.lines, geometry.samples)

    output = np.empty(thermal.shape + (NUM_PARAMETERS,))

    if n_workers > 1 and geometry.lines > 1:
        blocks = line_blocks(geometry.lines, n_workers * 4)
        with ProcessPoolExecutor(max_workers=n_workers) as executor:
            futures = {
                executor.submit(
                    _process_line_block_worker,
                    (solved, thermal[a:b], elevation[a:b], geometry,
                     geolocate, a)
                ): (a, b)
                for a, b in blocks
            }
            completed = 0
            for future in as_completed(futures):
                a, b = futures[future]
                output[a:b] = future.result()
                completed += 1
                if verbose:
                    logger.info("  Completed %d/%d line blocks",
                                completed, len(blocks))
    else:
        _interpolate_lines(solved, thermal, elevation, geometry, geolocate,
                           0, output, verbose=verbose)

    thermal_radiance = np.where(is_no_data(thermal), NO_DATA_VALUE, thermal)
    return PixelParameters(
        thermal_radiance=thermal_radiance.astype(np.float32),
        transmittance=output[..., TRANSMISSION].astype(np.float32),
        upwelled_radiance=output[..., UPWELLED_RADIANCE].astype(np.float32),
        downwelled_radiance=output[..., DOWNWELLED_RADIANCE].astype(np.float32),
    )
