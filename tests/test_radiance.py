"""
Tests for Planck radiance, spectral response handling and the MODTRAN
band projection.

Run with: pytest tests/test_radiance.py -v
"""

import numpy as np
import pytest

from radiance import (
    SensorVariant,
    SpectralResponse,
    blackbody_band_radiance,
    interpolate_over_modtran,
    load_sensor_response,
    observed_band_radiance,
    planck_radiance,
    read_spectral_response,
)


@pytest.fixture
def band10_response():
    """Triangular response over 10-12 um."""
    wl = np.linspace(10.0, 12.0, 41)
    return SpectralResponse(wl, 1.0 - np.abs(wl - 11.0))


class TestPlanck:
    """Validate Planck's law in MODTRAN units."""

    def test_known_value(self):
        """300K at 10 um is about 9.92 W/(m^2 sr um)."""
        radiance = planck_radiance(np.array([10.0]), 300.0)[0]
        assert radiance == pytest.approx(9.923e-4, rel=1e-3)

    @pytest.mark.parametrize("wavelength", [8.0, 10.9, 12.0])
    def test_increasing_with_temperature(self, wavelength):
        temperatures = np.arange(200.0, 351.0, 5.0)
        radiance = [planck_radiance(np.array([wavelength]), t)[0]
                    for t in temperatures]
        assert np.all(np.diff(radiance) > 0)

    @pytest.mark.parametrize("temperature", [200.0, 250.0, 300.0, 350.0])
    def test_single_peak_follows_wien(self, temperature):
        wl = np.linspace(1.0, 60.0, 5901)
        radiance = planck_radiance(wl, temperature)

        peak = int(np.argmax(radiance))
        assert 0 < peak < len(wl) - 1
        assert np.all(np.diff(radiance[:peak + 1]) > 0)
        assert np.all(np.diff(radiance[peak:]) < 0)
        assert wl[peak] == pytest.approx(2897.77 / temperature, abs=0.02)


class TestSpectralResponse:
    """Test band-effective weighting."""

    def test_constant_curve_is_unchanged(self, band10_response):
        curve = np.full(len(band10_response), 3.5e-4)
        assert band10_response.weighted_radiance(curve) == pytest.approx(
            3.5e-4, rel=1e-12)

    def test_arrays_are_read_only(self, band10_response):
        with pytest.raises(ValueError):
            band10_response.wavelength[0] = 0.0

    def test_blackbody_band_radiance_within_band_extremes(self, band10_response):
        lt = blackbody_band_radiance(300.0, band10_response)
        edges = planck_radiance(np.array([10.0, 12.0]), 300.0)
        assert edges.min() < lt < edges.max()

    def test_blackbody_band_radiance_increases(self, band10_response):
        lt_273 = blackbody_band_radiance(273.0, band10_response)
        lt_310 = blackbody_band_radiance(310.0, band10_response)
        assert lt_310 > lt_273 > 0


class TestSensorVariant:
    """Test the closed sensor set."""

    @pytest.mark.parametrize("satellite, instrument, variant", [
        ('LANDSAT_4', 'TM', SensorVariant.L4_TM),
        ('LANDSAT_5', 'TM', SensorVariant.L5_TM),
        ('landsat_7', 'etm', SensorVariant.L7_ETM),
        ('LANDSAT_8', 'OLI_TIRS', SensorVariant.L8_OLITIRS),
    ])
    def test_from_metadata(self, satellite, instrument, variant):
        assert SensorVariant.from_metadata(satellite, instrument) is variant

    def test_mismatched_instrument(self):
        with pytest.raises(ValueError, match="Invalid instrument"):
            SensorVariant.from_metadata('LANDSAT_8', 'TM')

    def test_variants_carry_table_data(self):
        assert SensorVariant.L8_OLITIRS.srs_filename == 'L8_Spectral_Response.txt'
        assert SensorVariant.L7_ETM.srs_count == 47


class TestReadSpectralResponse:
    """Test spectral response table loading."""

    def test_reads_expected_count(self, tmp_path):
        path = tmp_path / 'srs.txt'
        path.write_text("10.0 0.1\n10.5 0.8\n11.0 1.0\n11.5 0.7\n")
        srs = read_spectral_response(path, 4)
        assert len(srs) == 4
        np.testing.assert_allclose(srs.response, [0.1, 0.8, 1.0, 0.7])

    def test_extra_records_warn(self, tmp_path):
        path = tmp_path / 'srs.txt'
        path.write_text("10.0 0.1\n10.5 0.8\n11.0 1.0\n11.5 0.7\n")
        with pytest.warns(UserWarning):
            srs = read_spectral_response(path, 3)
        assert len(srs) == 3

    def test_truncated_table(self, tmp_path):
        path = tmp_path / 'srs.txt'
        path.write_text("10.0 0.1\n10.5 0.8\n")
        with pytest.raises(ValueError, match="expected 5 records"):
            read_spectral_response(path, 5)

    def test_single_column(self, tmp_path):
        path = tmp_path / 'srs.txt'
        path.write_text("10.0\n10.5\n11.0\n")
        with pytest.raises(ValueError):
            read_spectral_response(path, 3)

    def test_missing_file_named(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="missing.txt"):
            read_spectral_response(tmp_path / 'missing.txt', 3)

    def test_load_sensor_response(self, st_data_dir):
        srs = load_sensor_response(SensorVariant.L8_OLITIRS, st_data_dir)
        assert len(srs) == SensorVariant.L8_OLITIRS.srs_count
        assert srs.wavelength[0] == pytest.approx(10.0)


class TestModtranProjection:
    """Test projection of descending MODTRAN tables onto the SRF grid."""

    def test_linear_table_reproduced(self):
        wl = np.array([12.0, 11.0, 10.0, 9.0])
        targets = np.array([9.5, 10.0, 11.25, 12.0, 8.0, 12.5])
        result = interpolate_over_modtran(wl, wl - 8.0, targets)
        np.testing.assert_allclose(result, targets - 8.0, rtol=1e-12)

    def test_bracketing_and_extrapolation(self):
        wl = np.array([12.0, 11.0, 10.0, 9.0])
        rad = np.array([5.0, 3.0, 2.0, 0.0])
        result = interpolate_over_modtran(wl, rad, [10.5, 11.0, 8.5])
        # 10.5 and 11.0 fall in (11, 10]; 8.5 extends the last two records
        np.testing.assert_allclose(result, [2.5, 3.0, -1.0])

    def test_above_first_wavelength_uses_last_records(self):
        wl = np.array([12.0, 11.0, 10.0, 9.0])
        rad = np.array([5.0, 3.0, 2.0, 0.0])
        result = interpolate_over_modtran(wl, rad, [12.5])
        # Line through (10, 2) and (9, 0), not through the first two records
        np.testing.assert_allclose(result, [7.0])

    def test_observed_matches_blackbody_for_planck_table(self, band10_response):
        wl = np.linspace(14.0, 7.0, 701)
        rad = planck_radiance(wl, 290.0)
        lobs = observed_band_radiance(wl, rad, band10_response)
        lt = blackbody_band_radiance(290.0, band10_response)
        assert lobs == pytest.approx(lt, rel=1e-5)

    def test_too_short_table(self):
        with pytest.raises(ValueError):
            interpolate_over_modtran([10.0], [1.0], [10.0])
