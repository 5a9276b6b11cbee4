"""
Pytest fixtures: a synthetic spectral response table and MODTRAN run tree.

The MODTRAN radiances are built from known transmission, upwelled and
downwelled radiance so the point solver's output can be checked exactly.
The MODTRAN wavelength grid contains every spectral response wavelength,
which makes the linear projection exact at those wavelengths.
"""

import numpy as np
import pytest

from grid_points import GridPoint, write_grid_points
from radiance import planck_radiance

WATER_EMISSIVITY = 0.988

SRS_WAVELENGTHS = [f"{10.0 + 0.025 * i:.3f}" for i in range(101)]
MODTRAN_WAVELENGTHS = [f"{9.8 + 0.025 * i:.3f}" for i in range(117)][::-1]

MODTRAN_ELEVATIONS = (0.0, 1.0, 2.0)

# rows x cols = 2 x 2; point 3 has no MODTRAN run
GRID_POINTS = (
    GridPoint(0, 10, 20, 100, 200, -105.0, 40.0, 500000.0, 4400000.0, True),
    GridPoint(1, 10, 21, 100, 201, -104.7, 40.0, 525000.0, 4400000.0, True),
    GridPoint(2, 11, 20, 101, 200, -105.0, 40.3, 500000.0, 4433000.0, True),
    GridPoint(3, 11, 21, 101, 201, -104.7, 40.3, 525000.0, 4433000.0, False),
)
FIRST_ELEVATIONS = (0.150, 0.200, 0.050)


def expected_parameters(point, elevation):
    """Transmission, upwelled and downwelled radiance used to build runs."""
    tau = 0.9 - 0.1 * elevation - 0.01 * point
    lu = (1.0 + 0.2 * elevation) * 1e-4
    ld = (2.0 + 0.1 * point) * 1e-4
    return tau, lu, ld


def write_run(directory, wavelengths, radiance):
    directory.mkdir(parents=True, exist_ok=True)
    lines = [f"{wl} {rad:.15e}" for wl, rad in zip(wavelengths, radiance)]
    (directory / 'st_modtran.data').write_text('\n'.join(lines) + '\n')


@pytest.fixture
def st_data_dir(tmp_path):
    """ST_DATA_DIR with a Landsat 8 spectral response table."""
    data_dir = tmp_path / 'st_data'
    data_dir.mkdir()
    lines = []
    for s in SRS_WAVELENGTHS:
        response = np.exp(-((float(s) - 11.25) / 0.6) ** 2)
        lines.append(f"{s} {response:.8f}")
    (data_dir / 'L8_Spectral_Response.txt').write_text('\n'.join(lines) + '\n')
    return data_dir


@pytest.fixture
def modtran_work_dir(tmp_path):
    """Working directory with grid files and all MODTRAN runs."""
    work_dir = tmp_path / 'work'
    work_dir.mkdir()

    (work_dir / 'grid_points.hdr').write_text("4\n2\n2\n")
    write_grid_points(work_dir / 'grid_points.bin', GRID_POINTS)

    (work_dir / 'modtran_elevations.txt').write_text(
        f"{len(MODTRAN_ELEVATIONS)}\n"
        + ''.join(f"{e:.3f}\n" for e in MODTRAN_ELEVATIONS))
    (work_dir / 'grid_elevations.txt').write_text(
        ''.join(f"{e:.3f} {e:.3f}\n" for e in FIRST_ELEVATIONS))

    wl = np.array([float(s) for s in MODTRAN_WAVELENGTHS])
    for i, point in enumerate(GRID_POINTS):
        if not point.run_modtran:
            continue
        tags = (FIRST_ELEVATIONS[i],) + MODTRAN_ELEVATIONS[1:]
        for j, tag in enumerate(tags):
            tau, lu, ld = expected_parameters(i, j)
            zero_temp = 285.0 + i
            base = work_dir / point.directory / f"{tag:1.3f}"

            write_run(base / '273' / '0.0', MODTRAN_WAVELENGTHS,
                      tau * planck_radiance(wl, 273.0) + lu)
            write_run(base / '310' / '0.0', MODTRAN_WAVELENGTHS,
                      tau * planck_radiance(wl, 310.0) + lu)
            cold = tau * (WATER_EMISSIVITY * planck_radiance(wl, zero_temp)
                          + (1.0 - WATER_EMISSIVITY) * ld) + lu
            write_run(base / '000' / '0.1', MODTRAN_WAVELENGTHS, cold)
            (base / '000' / '0.1' / 'st_modtran.hdr').write_text(
                f"TARGET_PIXEL_SURFACE_TEMPERATURE {zero_temp:.3f}\n"
                f"RADIANCE_RECORD_COUNT {len(MODTRAN_WAVELENGTHS)}\n")

    return work_dir
