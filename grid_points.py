"""
Grid Point Lattice and MODTRAN Elevations

The grid points form a row-major lattice of ``rows x cols`` points laid
over the scene; MODTRAN was run at a subset of them for a fixed list of
ground elevations. This module loads that lattice from the working
directory and defines the two immutable values that flow through the
atmospheric parameter pipeline:

- ``SimulationInputs``: the lattice and per-point elevations, as loaded
- ``SolvedParameters``: the lattice plus transmission, upwelled and
  downwelled radiance for every simulated point and elevation

File layout (working directory):
    grid_points.hdr        count, rows, cols (one per line)
    grid_points.bin        packed grid point records (GRID_POINT_DTYPE)
    modtran_elevations.txt number of elevations, then one per line [km]
    grid_elevations.txt    first elevation + directory tag per simulated point
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple, Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

GRID_POINTS_HDR = 'grid_points.hdr'
GRID_POINTS_BIN = 'grid_points.bin'
MODTRAN_ELEVATIONS = 'modtran_elevations.txt'
GRID_ELEVATIONS = 'grid_elevations.txt'

# Native-endian C struct layout written by the grid point generator
GRID_POINT_DTYPE = np.dtype([
    ('index', 'i4'),
    ('row', 'i4'),
    ('col', 'i4'),
    ('narr_row', 'i4'),
    ('narr_col', 'i4'),
    ('lon', 'f8'),
    ('lat', 'f8'),
    ('map_x', 'f8'),
    ('map_y', 'f8'),
    ('run_modtran', 'i4'),
], align=True)

# Parameter positions in SolvedParameters.parameters
TRANSMISSION = 0
UPWELLED_RADIANCE = 1
DOWNWELLED_RADIANCE = 2
NUM_PARAMETERS = 3


@dataclass(frozen=True)
class GridPoint:
    index: int
    row: int
    col: int
    narr_row: int
    narr_col: int
    lon: float
    lat: float
    map_x: float
    map_y: float
    run_modtran: bool

    @property
    def directory(self) -> str:
        """Top-level MODTRAN directory name for this point."""
        return (f"{self.row:03d}_{self.col:03d}_"
                f"{self.narr_row:03d}_{self.narr_col:03d}")


@dataclass(frozen=True)
class Elevation:
    """A MODTRAN ground elevation [km] and its directory tag."""

    elevation: float
    directory: float

    @property
    def tag(self) -> str:
        return f"{self.directory:1.3f}"


@dataclass(frozen=True)
class SimulationInputs:
    """Grid lattice and per-point elevations, as loaded from disk."""

    rows: int
    cols: int
    points: Tuple[GridPoint, ...]
    elevations: Tuple[Tuple[Elevation, ...], ...]

    def __post_init__(self):
        if len(self.points) != self.rows * self.cols:
            raise ValueError(
                f"Grid point count {len(self.points)} does not match "
                f"{self.rows} rows x {self.cols} cols"
            )
        if len(self.elevations) != len(self.points):
            raise ValueError(
                "Elevation list count does not match grid point count"
            )

    @property
    def count(self) -> int:
        return len(self.points)

    @property
    def simulated_indices(self) -> Tuple[int, ...]:
        return tuple(i for i, p in enumerate(self.points) if p.run_modtran)


@dataclass(frozen=True)
class SolvedParameters:
    """
    Atmospheric parameters at every simulated grid point and elevation.

    All arrays are read-only. ``parameters`` has shape
    ``(count, num_elevations, NUM_PARAMETERS)`` and is NaN for points
    where MODTRAN did not run.
    """

    rows: int
    cols: int
    lon: np.ndarray
    lat: np.ndarray
    map_x: np.ndarray
    map_y: np.ndarray
    ran_modtran: np.ndarray
    elevation: np.ndarray
    parameters: np.ndarray

    def __post_init__(self):
        for name in ('lon', 'lat', 'map_x', 'map_y', 'ran_modtran',
                     'elevation', 'parameters'):
            getattr(self, name).setflags(write=False)

    @property
    def count(self) -> int:
        return len(self.lon)

    def lattice_position(self, index: int) -> Tuple[int, int]:
        return divmod(index, self.cols)

    def index_at(self, row: int, col: int) -> int:
        """Point index at a lattice position, or -1 if off the lattice."""
        if 0 <= row < self.rows and 0 <= col < self.cols:
            return row * self.cols + col
        return -1

    def is_usable(self, index: int) -> bool:
        return 0 <= index < self.count and bool(self.ran_modtran[index])


def read_grid_points_hdr(filename: Union[str, Path]) -> Tuple[int, int, int]:
    """Read (count, rows, cols) from the grid point header."""
    filename = Path(filename)
    if not filename.exists():
        raise FileNotFoundError(f"Failed opening {filename}")

    values = filename.read_text().split()
    try:
        count, rows, cols = (int(v) for v in values[:3])
    except ValueError:
        raise ValueError(f"Failed reading {filename}")

    return count, rows, cols


def read_grid_points(
    filename: Union[str, Path],
    count: int
) -> Tuple[GridPoint, ...]:
    """Read ``count`` packed grid point records."""
    filename = Path(filename)
    if not filename.exists():
        raise FileNotFoundError(f"Failed opening {filename}")

    records = np.fromfile(filename, dtype=GRID_POINT_DTYPE, count=count)
    if len(records) != count:
        raise ValueError(
            f"Failed reading {filename}: expected {count} records, "
            f"found {len(records)}"
        )

    return tuple(
        GridPoint(
            index=int(r['index']),
            row=int(r['row']),
            col=int(r['col']),
            narr_row=int(r['narr_row']),
            narr_col=int(r['narr_col']),
            lon=float(r['lon']),
            lat=float(r['lat']),
            map_x=float(r['map_x']),
            map_y=float(r['map_y']),
            run_modtran=bool(r['run_modtran']),
        )
        for r in records
    )


def write_grid_points(filename: Union[str, Path], points) -> None:
    """Write grid points in the packed binary layout."""
    records = np.zeros(len(points), dtype=GRID_POINT_DTYPE)
    for i, p in enumerate(points):
        records[i] = (p.index, p.row, p.col, p.narr_row, p.narr_col,
                      p.lon, p.lat, p.map_x, p.map_y, int(p.run_modtran))
    records.tofile(filename)


def read_modtran_elevations(filename: Union[str, Path]) -> np.ndarray:
    """Read the global list of MODTRAN ground elevations [km]."""
    filename = Path(filename)
    if not filename.exists():
        raise FileNotFoundError(f"Failed reading {filename}")

    values = filename.read_text().split()
    try:
        num_elevations = int(values[0])
        elevations = np.array(
            [float(v) for v in values[1:1 + num_elevations]]
        )
    except (IndexError, ValueError):
        raise ValueError(f"Failed reading {filename}")
    if len(elevations) != num_elevations:
        raise ValueError(
            f"Failed reading {filename}: expected {num_elevations} "
            f"elevations, found {len(elevations)}"
        )

    return elevations


def read_grid_elevations(
    filename: Union[str, Path],
    num_simulated: int
) -> pd.DataFrame:
    """
    Read the first-elevation overrides for the simulated points.

    Returns a frame with ``elevation`` and ``directory`` columns, one row
    per simulated point in point order.
    """
    filename = Path(filename)
    if not filename.exists():
        raise FileNotFoundError(f"Failed reading {filename}")

    if num_simulated == 0:
        return pd.DataFrame(columns=['elevation', 'directory'])

    try:
        data = pd.read_csv(
            filename,
            sep=r'\s+',
            header=None,
            names=['elevation', 'directory'],
            nrows=num_simulated
        )
    except pd.errors.EmptyDataError:
        raise ValueError(f"Failed reading {filename}")

    if len(data) != num_simulated or data.isna().any().any():
        raise ValueError(
            f"Failed reading {filename}: expected {num_simulated} "
            f"records, found {len(data.dropna())}"
        )

    return data


def load_simulation_inputs(work_dir: Union[str, Path] = '.') -> SimulationInputs:
    """
    Load the grid lattice and elevations from ``work_dir``.

    Every point gets the global MODTRAN elevations; each simulated point
    then has its first elevation replaced by the entry from
    grid_elevations.txt.
    """
    work_dir = Path(work_dir)

    count, rows, cols = read_grid_points_hdr(work_dir / GRID_POINTS_HDR)
    logger.info("Grid points: count=%d rows=%d cols=%d", count, rows, cols)
    points = read_grid_points(work_dir / GRID_POINTS_BIN, count)

    gndalt = read_modtran_elevations(work_dir / MODTRAN_ELEVATIONS)
    base = tuple(Elevation(float(e), float(e)) for e in gndalt)

    simulated = [i for i, p in enumerate(points) if p.run_modtran]
    overrides = read_grid_elevations(work_dir / GRID_ELEVATIONS,
                                     len(simulated))

    elevations = [base] * count
    for i, row in zip(simulated, overrides.itertuples(index=False)):
        first = Elevation(float(row.elevation), float(row.directory))
        elevations[i] = (first,) + base[1:]

    logger.info("Loaded %d elevations for %d simulated points",
                len(base), len(simulated))

    return SimulationInputs(rows=rows, cols=cols, points=points,
                            elevations=tuple(elevations))
