"""
Band-Effective Radiance for Landsat Thermal Bands

This module reduces spectral curves to single band-effective radiances
using a sensor's spectral response function (SRF):

- Planck blackbody radiance in MODTRAN units [W cm^-2 sr^-1 um^-1]
- SRF-weighted blackbody radiance for a temperature (Lt)
- Linear projection of a MODTRAN radiance table onto the SRF grid and
  its SRF-weighted radiance (Lobs)

The supported sensors form a closed set; each variant carries the name
and record count of its spectral response table.
"""

import logging
import warnings
from enum import Enum
from pathlib import Path
from typing import Union

import numpy as np
import pandas as pd

from spectral_integration import int_tabulated

logger = logging.getLogger(__name__)

# Physical constants used for the Planck equation
PLANCK_CONST = 6.6260755e-34        # J s
BOLTZMANN_GAS_CONST = 1.3806503e-23  # J/K
SPEED_OF_LIGHT = 299792458.0         # m/s

# W m^-2 sr^-1 um^-1 -> W cm^-2 sr^-1 um^-1
M2_TO_CM2 = 1e-4


class SensorVariant(Enum):
    """Landsat thermal sensors with a known spectral response table."""

    L4_TM = ('LANDSAT_4', 'TM', 'L4_Spectral_Response.txt', 125)
    L5_TM = ('LANDSAT_5', 'TM', 'L5_Spectral_Response.txt', 171)
    L7_ETM = ('LANDSAT_7', 'ETM', 'L7_Spectral_Response.txt', 47)
    L8_OLITIRS = ('LANDSAT_8', 'OLI_TIRS', 'L8_Spectral_Response.txt', 101)

    def __init__(self, satellite, instrument, srs_filename, srs_count):
        self.satellite = satellite
        self.instrument = instrument
        self.srs_filename = srs_filename
        self.srs_count = srs_count

    @classmethod
    def from_metadata(cls, satellite: str, instrument: str) -> 'SensorVariant':
        """
        Select the variant for a satellite/instrument pair.

        Raises
        ------
        ValueError
            If the combination is not supported
        """
        key = (satellite.upper(), instrument.upper())
        for variant in cls:
            if (variant.satellite, variant.instrument) == key:
                return variant
        raise ValueError(
            f"Invalid instrument type: satellite={satellite} "
            f"instrument={instrument}"
        )


class SpectralResponse:
    """
    A sensor's relative spectral response, ascending in wavelength.

    Parameters
    ----------
    wavelength : array-like
        Wavelength [um]
    response : array-like
        Relative response at each wavelength
    """

    def __init__(self, wavelength, response):
        wavelength = np.array(wavelength, dtype=np.float64)
        response = np.array(response, dtype=np.float64)
        if wavelength.shape != response.shape or wavelength.ndim != 1:
            raise ValueError(
                "Spectral response wavelength and response columns "
                "must be 1-D and the same length"
            )
        wavelength.setflags(write=False)
        response.setflags(write=False)
        self.wavelength = wavelength
        self.response = response
        self.integral = int_tabulated(wavelength, response)

    def __len__(self):
        return len(self.wavelength)

    def weighted_radiance(self, spectral_radiance: np.ndarray) -> float:
        """
        Band-effective value of a curve sampled on this SRF's wavelengths.

        Integrates (curve * response) over wavelength and divides by the
        integral of the response alone.
        """
        product = np.asarray(spectral_radiance, dtype=np.float64) * self.response
        return int_tabulated(self.wavelength, product) / self.integral


def read_spectral_response(
    srs_file: Union[str, Path],
    count: int
) -> SpectralResponse:
    """
    Read a two-column (wavelength, response) spectral response table.

    Exactly ``count`` records are used.

    Raises
    ------
    FileNotFoundError
        If the file does not exist
    ValueError
        If fewer than ``count`` complete records are present
    """
    srs_file = Path(srs_file)
    if not srs_file.exists():
        raise FileNotFoundError(
            f"Can't open Spectral Response file [{srs_file}]"
        )

    logger.info("Reading Spectral Response File [%s]", srs_file)
    try:
        data = pd.read_csv(srs_file, sep=r'\s+', header=None, comment='#')
    except pd.errors.EmptyDataError:
        raise ValueError(f"Failed reading spectral response file [{srs_file}]")
    if data.shape[1] < 2:
        raise ValueError(
            f"Failed reading spectral response file [{srs_file}]: "
            f"expected wavelength and response columns"
        )
    data = data.iloc[:, :2].dropna()
    data.columns = ['wavelength', 'response']

    if len(data) < count:
        raise ValueError(
            f"Failed reading spectral response file [{srs_file}]: "
            f"expected {count} records, found {len(data)}"
        )
    if len(data) > count:
        warnings.warn(
            f"{srs_file} holds {len(data)} records; using the first {count}"
        )
        data = data.iloc[:count]

    return SpectralResponse(data['wavelength'].values, data['response'].values)


def load_sensor_response(
    variant: SensorVariant,
    st_data_dir: Union[str, Path]
) -> SpectralResponse:
    """Read the spectral response table for ``variant`` from ``st_data_dir``."""
    return read_spectral_response(
        Path(st_data_dir) / variant.srs_filename, variant.srs_count
    )


def planck_radiance(wavelength_um: np.ndarray, temperature: float) -> np.ndarray:
    """
    Blackbody spectral radiance from Planck's law.

    Parameters
    ----------
    wavelength_um : array-like
        Wavelength [um]
    temperature : float
        Temperature [K]

    Returns
    -------
    radiance : ndarray
        Spectral radiance [W cm^-2 sr^-1 um^-1], matching MODTRAN units
    """
    lam = np.asarray(wavelength_um, dtype=np.float64) * 1e-6  # m

    # [W m^-2 sr^-1 um^-1]
    bb = (2.0 * PLANCK_CONST * SPEED_OF_LIGHT * SPEED_OF_LIGHT * 1e-6
          * lam ** -5.0
          / (np.exp((PLANCK_CONST * SPEED_OF_LIGHT)
                    / (lam * BOLTZMANN_GAS_CONST * temperature)) - 1.0))

    return bb * M2_TO_CM2


def blackbody_band_radiance(
    temperature: float,
    spectral_response: SpectralResponse
) -> float:
    """
    Band-effective blackbody radiance (Lt) for a temperature.

    Parameters
    ----------
    temperature : float
        Temperature [K]
    spectral_response : SpectralResponse
        Sensor spectral response

    Returns
    -------
    radiance : float
        SRF-weighted radiance [W cm^-2 sr^-1 um^-1]
    """
    bb = planck_radiance(spectral_response.wavelength, temperature)
    return spectral_response.weighted_radiance(bb)


def interpolate_over_modtran(
    modtran_wavelength: np.ndarray,
    modtran_radiance: np.ndarray,
    target_wavelength: np.ndarray
) -> np.ndarray:
    """
    Linearly interpolate MODTRAN radiance onto target wavelengths.

    The MODTRAN table is ordered by decreasing wavelength. For each
    target the bracketing pair (i, i+1) with
    ``wavelength[i] >= target > wavelength[i+1]`` is located by a linear
    scan. Targets with no bracketing pair, below the last table
    wavelength or above the first, are extrapolated from the last two
    records.

    Parameters
    ----------
    modtran_wavelength : array-like
        MODTRAN wavelengths [um], descending
    modtran_radiance : array-like
        MODTRAN radiance for one run
    target_wavelength : array-like
        Wavelengths to interpolate to (e.g. the SRF grid)

    Returns
    -------
    radiance : ndarray
        Interpolated radiance at each target wavelength
    """
    wl = np.asarray(modtran_wavelength, dtype=np.float64)
    rad = np.asarray(modtran_radiance, dtype=np.float64)
    num_in = len(wl)
    if num_in < 2:
        raise ValueError(
            f"MODTRAN table needs at least 2 records, got {num_in}"
        )

    out = np.empty(len(target_wavelength), dtype=np.float64)
    for o, g in enumerate(np.asarray(target_wavelength, dtype=np.float64)):
        for i in range(num_in - 1):
            if wl[i] >= g > wl[i + 1]:
                lo = i
                break
        else:
            # Outside the table, use the last two
            lo = num_in - 2

        g1, g2 = wl[lo], wl[lo + 1]
        d1, d2 = rad[lo], rad[lo + 1]
        out[o] = d1 + (g - g1) / (g2 - g1) * (d2 - d1)

    return out


def observed_band_radiance(
    modtran_wavelength: np.ndarray,
    modtran_radiance: np.ndarray,
    spectral_response: SpectralResponse
) -> float:
    """
    Band-effective observed radiance (Lobs) for one MODTRAN run.

    Returns
    -------
    radiance : float
        SRF-weighted radiance [W cm^-2 sr^-1 um^-1]
    """
    projected = interpolate_over_modtran(
        modtran_wavelength, modtran_radiance, spectral_response.wavelength
    )
    return spectral_response.weighted_radiance(projected)
