"""
MODTRAN Interface for Thermal Atmospheric Parameters

This module reads the MODTRAN runs made at each grid point and ground
elevation and derives the three atmospheric parameters used for
Landsat thermal surface temperature:

- transmission (tau)
- upwelled radiance (Lu)
- downwelled radiance (Ld)

For each point/elevation three MODTRAN runs are used: surface at 273K
and 310K with albedo 0, and at 0K with albedo 0.1. The two warm runs
give two (Lt, Lobs) pairs that fix the linear model
``Lobs = Lt * tau + Lu``; the cold run then yields Ld.
"""

import logging
import os
from concurrent.futures import ProcessPoolExecutor, as_completed
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np
import pandas as pd

from grid_points import (
    NUM_PARAMETERS,
    Elevation,
    GridPoint,
    SimulationInputs,
    SolvedParameters,
)
from radiance import (
    SensorVariant,
    blackbody_band_radiance,
    load_sensor_response,
    observed_band_radiance,
)

logger = logging.getLogger(__name__)

MODTRAN_HEADER = 'st_modtran.hdr'
MODTRAN_DATA = 'st_modtran.data'
ATMOSPHERIC_PARAMETERS = 'atmospheric_parameters.txt'
USED_POINTS = 'used_points.txt'

# (temperature [K], albedo) of the three MODTRAN runs per elevation
MODTRAN_RUNS = ((273, 0.0), (310, 0.0), (0, 0.1))


def solve_linear_model(
    lt_273: float,
    lt_310: float,
    y_0: float,
    y_1: float
) -> Tuple[float, float]:
    """
    Solve ``Lobs = Lt * tau + Lu`` through two (Lt, Lobs) pairs.

    Parameters
    ----------
    lt_273, lt_310 : float
        Band-effective blackbody radiance at 273K and 310K
    y_0, y_1 : float
        Band-effective observed radiance for the 273K and 310K runs

    Returns
    -------
    tau : float
        Transmission
    lu : float
        Upwelled radiance
    """
    delta_radiance_inv = 1.0 / (lt_310 - lt_273)
    tau = (y_1 - y_0) * delta_radiance_inv
    lu = (lt_310 * y_0 - lt_273 * y_1) * delta_radiance_inv
    return tau, lu


def downwelled_radiance(
    obs_radiance_0: float,
    lu: float,
    tau: float,
    lt_0: float,
    emissivity: float
) -> float:
    """
    Downwelled radiance from the 0K, albedo 0.1 MODTRAN run.

    ``Ld = ((Lobs - Lu) / tau - Lt * e) / (1 - e)``
    """
    return ((obs_radiance_0 - lu) / tau - lt_0 * emissivity) / (1.0 - emissivity)


class ModtranAtmosphere:
    """
    Derive atmospheric parameters from MODTRAN runs at grid points.

    Parameters
    ----------
    sensor : SensorVariant or str
        Sensor whose spectral response weights the radiances
    st_data_dir : str, optional
        Directory holding the spectral response tables.
        If not provided, uses ST_DATA_DIR environment variable.
    work_dir : str, optional
        Directory holding the MODTRAN run directories. Default: '.'

    Example
    -------
    >>> atmosphere = ModtranAtmosphere(SensorVariant.L8_OLITIRS)
    >>> inputs = load_simulation_inputs('.')
    >>> solved = atmosphere.process_grid(inputs)
    """

    # Reference surface (water); albedo is 1 - emissivity
    WATER_EMISSIVITY = 0.988

    def __init__(
        self,
        sensor: Union[SensorVariant, str],
        st_data_dir: Optional[str] = None,
        work_dir: Union[str, Path] = '.'
    ):
        if isinstance(sensor, str):
            sensor = SensorVariant[sensor]
        self.sensor = sensor

        if st_data_dir is None:
            st_data_dir = os.environ.get('ST_DATA_DIR')

        if st_data_dir is None:
            raise ValueError(
                "ST_DATA_DIR environment variable is not set. "
                "Set it or pass st_data_dir parameter."
            )

        self.st_data_dir = Path(st_data_dir)
        self.work_dir = Path(work_dir)

        self.spectral_response = load_sensor_response(sensor, self.st_data_dir)

        # Reference blackbody radiances, shared by every point/elevation
        self.lt_273 = blackbody_band_radiance(273.0, self.spectral_response)
        self.lt_310 = blackbody_band_radiance(310.0, self.spectral_response)

    def run_directory(
        self,
        point: GridPoint,
        elevation: Elevation,
        temperature: int,
        albedo: float
    ) -> Path:
        """Directory of one MODTRAN run."""
        return (self.work_dir / point.directory / elevation.tag
                / f"{temperature:03d}" / f"{albedo:1.1f}")

    def read_modtran_header(self, filepath: Path) -> Tuple[float, int]:
        """
        Read the 0K run header.

        Returns
        -------
        zero_temp : float
            Temperature of the lowest atmospheric layer [K]
        num_entries : int
            Number of radiance records in each of the three runs
        """
        if not filepath.exists():
            raise FileNotFoundError(
                f"Can't open MODTRAN information file [{filepath}]"
            )

        lines = [line.split() for line in filepath.read_text().splitlines()
                 if line.strip()]

        try:
            zero_temp = float(lines[0][1])
        except (IndexError, ValueError):
            raise ValueError(
                f"End of file (EOF) is met before reading "
                f"TARGET_PIXEL_SURFACE_TEMPERATURE [{filepath}]"
            )
        try:
            num_entries = int(lines[1][1])
        except (IndexError, ValueError):
            raise ValueError(
                f"End of file (EOF) is met before reading "
                f"RADIANCE_RECORD_COUNT [{filepath}]"
            )
        if num_entries < 2:
            raise ValueError(
                f"Invalid RADIANCE_RECORD_COUNT {num_entries}, at least 2 "
                f"records are needed [{filepath}]"
            )

        return zero_temp, num_entries

    def read_modtran_radiance(
        self,
        filepath: Path,
        num_entries: int
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Read ``num_entries`` (wavelength, radiance) records of one run.
        """
        if not filepath.exists():
            raise FileNotFoundError(
                f"Can't open MODTRAN data file [{filepath}]"
            )

        try:
            data = pd.read_csv(filepath, sep=r'\s+', header=None,
                               nrows=num_entries)
        except (pd.errors.EmptyDataError, pd.errors.ParserError):
            raise ValueError(f"Failed reading st_modtran.data lines [{filepath}]")

        if (data.shape[1] < 2 or len(data) != num_entries
                or data.iloc[:, :2].isna().any().any()):
            raise ValueError(
                f"Failed reading st_modtran.data lines [{filepath}]: "
                f"expected {num_entries} wavelength/radiance records"
            )

        try:
            wavelength = data.iloc[:, 0].to_numpy(dtype=np.float64)
            radiance = data.iloc[:, 1].to_numpy(dtype=np.float64)
        except ValueError:
            raise ValueError(
                f"Failed reading st_modtran.data lines [{filepath}]: "
                f"non-numeric record"
            )
        return wavelength, radiance

    def read_elevation_runs(
        self,
        point: GridPoint,
        elevation: Elevation
    ) -> Tuple[float, np.ndarray, np.ndarray]:
        """
        Read the three MODTRAN runs for a point at one elevation.

        Returns
        -------
        zero_temp : float
            Near-surface temperature from the 0K run header [K]
        wavelength : ndarray
            Wavelength column shared by the runs [um], descending
        radiance : ndarray
            Shape (num_entries, 3): 273K/0.0, 310K/0.0, 0K/0.1 radiance
        """
        header = self.run_directory(point, elevation, 0, 0.1) / MODTRAN_HEADER
        zero_temp, num_entries = self.read_modtran_header(header)

        wavelength = None
        radiance = np.empty((num_entries, len(MODTRAN_RUNS)))
        for column, (temperature, albedo) in enumerate(MODTRAN_RUNS):
            data_file = (self.run_directory(point, elevation, temperature,
                                            albedo) / MODTRAN_DATA)
            wl, rad = self.read_modtran_radiance(data_file, num_entries)
            if wavelength is None:
                wavelength = wl
            radiance[:, column] = rad

        return zero_temp, wavelength, radiance

    def solve_elevation(
        self,
        zero_temp: float,
        wavelength: np.ndarray,
        radiance: np.ndarray
    ) -> Tuple[float, float, float]:
        """
        Compute (tau, Lu, Ld) from the three runs of one elevation.
        """
        srs = self.spectral_response

        y_0 = observed_band_radiance(wavelength, radiance[:, 0], srs)
        y_1 = observed_band_radiance(wavelength, radiance[:, 1], srs)
        tau, lu = solve_linear_model(self.lt_273, self.lt_310, y_0, y_1)

        lt_0 = blackbody_band_radiance(zero_temp, srs)
        obs_radiance_0 = observed_band_radiance(wavelength, radiance[:, 2], srs)
        ld = downwelled_radiance(obs_radiance_0, lu, tau, lt_0,
                                 self.WATER_EMISSIVITY)

        return tau, lu, ld

    def process_point(
        self,
        point: GridPoint,
        elevations: Tuple[Elevation, ...]
    ) -> np.ndarray:
        """
        Parameters for every elevation of one simulated point.

        Returns
        -------
        parameters : ndarray
            Shape (num_elevations, 3): tau, Lu, Ld
        """
        result = np.empty((len(elevations), NUM_PARAMETERS))
        for j, elevation in enumerate(elevations):
            runs = self.read_elevation_runs(point, elevation)
            result[j] = self.solve_elevation(*runs)
            logger.debug("Point %d elevation %s: tau=%.6f lu=%.6f ld=%.6f",
                         point.index, elevation.tag, *result[j])
        return result

    def process_grid(
        self,
        inputs: SimulationInputs,
        n_workers: int = 1,
        verbose: bool = False
    ) -> SolvedParameters:
        """
        Solve every simulated grid point at every elevation.

        Points without a MODTRAN run are left as NaN. Any missing or
        malformed MODTRAN file aborts the whole pass.

        Parameters
        ----------
        inputs : SimulationInputs
            Loaded grid lattice and elevations
        n_workers : int
            Number of parallel worker processes. Default: 1 (sequential)
        verbose : bool
            Log progress at info level. Default: False
        """
        num_elevations = max((len(e) for e in inputs.elevations), default=0)
        parameters = np.full((inputs.count, num_elevations, NUM_PARAMETERS),
                             np.nan)
        elevation = np.full((inputs.count, num_elevations), np.nan)
        for i, point_elevations in enumerate(inputs.elevations):
            elevation[i, :len(point_elevations)] = [
                e.elevation for e in point_elevations]

        simulated = inputs.simulated_indices
        logger.info("Solving %d of %d grid points with %d worker(s)",
                    len(simulated), inputs.count, n_workers)

        if n_workers > 1 and len(simulated) > 1:
            point_args = [
                (i, inputs.points[i], inputs.elevations[i], self.sensor.name,
                 str(self.st_data_dir), str(self.work_dir))
                for i in simulated
            ]
            completed = 0
            with ProcessPoolExecutor(max_workers=n_workers) as executor:
                futures = {
                    executor.submit(_process_point_worker, args): args[0]
                    for args in point_args
                }
                for future in as_completed(futures):
                    idx = futures[future]
                    parameters[idx] = future.result()
                    completed += 1
                    if verbose and completed % 100 == 0:
                        logger.info("  Completed %d/%d points",
                                    completed, len(simulated))
        else:
            for count, i in enumerate(simulated, start=1):
                parameters[i] = self.process_point(inputs.points[i],
                                                   inputs.elevations[i])
                if verbose and count % 100 == 0:
                    logger.info("  Processed %d/%d points",
                                count, len(simulated))

        return SolvedParameters(
            rows=inputs.rows,
            cols=inputs.cols,
            lon=np.array([p.lon for p in inputs.points]),
            lat=np.array([p.lat for p in inputs.points]),
            map_x=np.array([p.map_x for p in inputs.points]),
            map_y=np.array([p.map_y for p in inputs.points]),
            ran_modtran=np.array([p.run_modtran for p in inputs.points],
                                 dtype=bool),
            elevation=elevation,
            parameters=parameters,
        )


def _process_point_worker(args):
    """
    Worker function for parallel point processing.

    This is a module-level function to enable pickling for multiprocessing.
    """
    idx, point, elevations, sensor_name, st_data_dir, work_dir = args

    # Create a new instance in this worker process
    atmosphere = ModtranAtmosphere(
        sensor=sensor_name,
        st_data_dir=st_data_dir,
        work_dir=work_dir
    )
    return atmosphere.process_point(point, elevations)


def write_atmospheric_parameters(
    solved: SolvedParameters,
    output_file: Union[str, Path] = ATMOSPHERIC_PARAMETERS
):
    """
    Write lat, lon, elevation, tau, Lu, Ld for each simulated point and
    elevation.
    """
    logger.info("Creating Atmospheric Parameters File = [%s]", output_file)
    with open(output_file, 'w') as f:
        for i in np.flatnonzero(solved.ran_modtran):
            for j in range(solved.elevation.shape[1]):
                tau, lu, ld = solved.parameters[i, j]
                f.write(
                    f"{solved.lat[i]:f},{solved.lon[i]:f},"
                    f"{solved.elevation[i, j]:12.9f},{tau:12.9f},"
                    f"{lu:12.9f},{ld:12.9f}\n"
                )


def write_used_points(
    solved: SolvedParameters,
    output_file: Union[str, Path] = USED_POINTS
):
    """Write the index and map coordinates of every simulated point."""
    with open(output_file, 'w') as f:
        for i in np.flatnonzero(solved.ran_modtran):
            f.write(f'"{i}"|"{solved.map_x[i]:f}"|"{solved.map_y[i]:f}"\n')


def validate_environment(sensor: SensorVariant) -> bool:
    """
    Check ST_DATA_DIR and the sensor's spectral response table, printing
    diagnostic information.
    """
    print("Surface Temperature Environment Validator")
    print("=" * 40)

    st_data_dir = os.environ.get('ST_DATA_DIR')

    if st_data_dir is None:
        print("ERROR: ST_DATA_DIR environment variable not set")
        return False

    print(f"ST_DATA_DIR: {st_data_dir}")

    st_data_dir = Path(st_data_dir)
    if st_data_dir.is_dir():
        print(f"  Data directory: OK ({st_data_dir})")
    else:
        print(f"  Data directory: NOT FOUND ({st_data_dir})")
        return False

    srs_file = st_data_dir / sensor.srs_filename
    if srs_file.exists():
        print(f"  Spectral response ({sensor.name}): OK ({srs_file})")
    else:
        print(f"  Spectral response ({sensor.name}): NOT FOUND ({srs_file})")
        return False

    print("\nEnvironment: OK")
    return True
