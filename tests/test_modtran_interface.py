"""
Tests for the grid point atmospheric parameter solver.

Run with: pytest tests/test_modtran_interface.py -v
"""

import numpy as np
import pytest

from conftest import FIRST_ELEVATIONS, GRID_POINTS, expected_parameters
from grid_points import load_simulation_inputs
from modtran_interface import (
    ModtranAtmosphere,
    downwelled_radiance,
    solve_linear_model,
    write_atmospheric_parameters,
    write_used_points,
)
from radiance import SensorVariant


@pytest.fixture
def atmosphere(st_data_dir, modtran_work_dir):
    return ModtranAtmosphere(SensorVariant.L8_OLITIRS,
                             st_data_dir=str(st_data_dir),
                             work_dir=modtran_work_dir)


@pytest.fixture
def inputs(modtran_work_dir):
    return load_simulation_inputs(modtran_work_dir)


class TestLinearModel:
    """Lobs = Lt * tau + Lu through two reference temperatures."""

    @pytest.mark.parametrize("tau, lu", [
        (0.8, 1.5), (0.35, 0.02), (1.0, 0.0), (0.6, -0.4),
    ])
    def test_recovers_known_parameters(self, tau, lu):
        lt_273, lt_310 = 5.0, 9.0
        y_0 = lt_273 * tau + lu
        y_1 = lt_310 * tau + lu
        got_tau, got_lu = solve_linear_model(lt_273, lt_310, y_0, y_1)
        assert got_tau == pytest.approx(tau, rel=1e-12)
        assert got_lu == pytest.approx(lu, abs=1e-12)

    def test_downwelled_inverts_forward_model(self):
        tau, lu, lt_0, ld, e = 0.8, 1e-4, 8e-4, 2e-4, 0.988
        lobs_0 = tau * (e * lt_0 + (1 - e) * ld) + lu
        assert downwelled_radiance(lobs_0, lu, tau, lt_0, e) == pytest.approx(
            ld, rel=1e-9)


class TestModtranAtmosphere:
    """End-to-end point solve over a synthetic MODTRAN tree."""

    def test_requires_st_data_dir(self, monkeypatch):
        monkeypatch.delenv('ST_DATA_DIR', raising=False)
        with pytest.raises(ValueError, match="ST_DATA_DIR"):
            ModtranAtmosphere(SensorVariant.L8_OLITIRS)

    def test_reads_st_data_dir_from_environment(self, monkeypatch, st_data_dir):
        monkeypatch.setenv('ST_DATA_DIR', str(st_data_dir))
        atmosphere = ModtranAtmosphere('L8_OLITIRS')
        assert atmosphere.sensor is SensorVariant.L8_OLITIRS
        assert atmosphere.lt_310 > atmosphere.lt_273

    def test_missing_spectral_response(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="L7_Spectral_Response"):
            ModtranAtmosphere(SensorVariant.L7_ETM, st_data_dir=str(tmp_path))

    def test_run_directory(self, atmosphere, inputs):
        path = atmosphere.run_directory(inputs.points[0],
                                        inputs.elevations[0][0], 0, 0.1)
        assert path.relative_to(atmosphere.work_dir).as_posix() == \
            '010_020_100_200/0.150/000/0.1'

    def test_read_header(self, atmosphere, inputs):
        header = (atmosphere.run_directory(inputs.points[1],
                                           inputs.elevations[1][0], 0, 0.1)
                  / 'st_modtran.hdr')
        zero_temp, num_entries = atmosphere.read_modtran_header(header)
        assert zero_temp == pytest.approx(286.0)
        assert num_entries == 117

    def test_solves_every_simulated_point(self, atmosphere, inputs):
        solved = atmosphere.process_grid(inputs)

        for i in inputs.simulated_indices:
            for j in range(3):
                tau, lu, ld = solved.parameters[i, j]
                exp_tau, exp_lu, exp_ld = expected_parameters(i, j)
                assert tau == pytest.approx(exp_tau, rel=1e-7)
                assert lu == pytest.approx(exp_lu, rel=1e-6)
                assert ld == pytest.approx(exp_ld, rel=1e-5)

        assert np.isnan(solved.parameters[3]).all()
        assert solved.elevation[0, 0] == pytest.approx(FIRST_ELEVATIONS[0])
        assert list(solved.ran_modtran) == [True, True, True, False]

    def test_parallel_matches_serial(self, atmosphere, inputs):
        serial = atmosphere.process_grid(inputs)
        parallel = atmosphere.process_grid(inputs, n_workers=2)
        np.testing.assert_array_equal(serial.parameters, parallel.parameters)

    def test_missing_data_file_is_fatal(self, atmosphere, inputs,
                                        modtran_work_dir):
        missing = (modtran_work_dir / '010_021_100_201' / '1.000' / '310'
                   / '0.0' / 'st_modtran.data')
        missing.unlink()
        with pytest.raises(FileNotFoundError, match="010_021_100_201"):
            atmosphere.process_grid(inputs)

    def test_truncated_data_file_is_fatal(self, atmosphere, inputs,
                                          modtran_work_dir):
        data_file = (modtran_work_dir / '011_020_101_200' / '2.000' / '273'
                     / '0.0' / 'st_modtran.data')
        lines = data_file.read_text().splitlines()
        data_file.write_text('\n'.join(lines[:50]) + '\n')
        with pytest.raises(ValueError, match="st_modtran.data"):
            atmosphere.process_grid(inputs)

    def test_header_without_record_count(self, atmosphere, inputs,
                                         modtran_work_dir):
        header = (modtran_work_dir / '010_020_100_200' / '0.150' / '000'
                  / '0.1' / 'st_modtran.hdr')
        header.write_text("TARGET_PIXEL_SURFACE_TEMPERATURE 285.0\n")
        with pytest.raises(ValueError, match="RADIANCE_RECORD_COUNT"):
            atmosphere.process_grid(inputs)

    @pytest.mark.parametrize("count", [1, 0, -3])
    def test_header_with_too_few_records(self, atmosphere, inputs,
                                         modtran_work_dir, count):
        header = (modtran_work_dir / '010_020_100_200' / '0.150' / '000'
                  / '0.1' / 'st_modtran.hdr')
        header.write_text("TARGET_PIXEL_SURFACE_TEMPERATURE 285.0\n"
                          f"RADIANCE_RECORD_COUNT {count}\n")
        with pytest.raises(ValueError, match="st_modtran.hdr") as exc_info:
            atmosphere.process_grid(inputs)
        assert f"RADIANCE_RECORD_COUNT {count}" in str(exc_info.value)


class TestOutputs:
    """Test the text outputs of the point pass."""

    def test_atmospheric_parameters_file(self, atmosphere, inputs, tmp_path):
        solved = atmosphere.process_grid(inputs)
        output = tmp_path / 'atmospheric_parameters.txt'
        write_atmospheric_parameters(solved, output)

        lines = output.read_text().splitlines()
        assert len(lines) == 3 * 3

        fields = lines[0].split(',')
        assert fields[0] == '40.000000'
        assert fields[1] == '-105.000000'
        assert fields[2] == ' 0.150000000'
        assert len(fields[3].split('.')[1]) == 9
        assert float(fields[3]) == pytest.approx(expected_parameters(0, 0)[0])

    def test_used_points_file(self, atmosphere, inputs, tmp_path):
        solved = atmosphere.process_grid(inputs)
        output = tmp_path / 'used_points.txt'
        write_used_points(solved, output)

        lines = output.read_text().splitlines()
        assert lines == [
            f'"{i}"|"{p.map_x:f}"|"{p.map_y:f}"'
            for i, p in enumerate(GRID_POINTS) if p.run_modtran
        ]
