"""
Scene raster input/output and geolocation.

Reads the Landsat thermal band and the matching elevation band, maps
pixel line/sample to longitude/latitude, and writes the four per-pixel
atmospheric parameter bands as GeoTIFFs.
"""

import logging
from pathlib import Path
from typing import Dict, Tuple, Union

import numpy as np
import rasterio
from rasterio.crs import CRS
from rasterio.warp import transform as warp_transform

from pixel_interpolation import NO_DATA_VALUE, PixelParameters, SceneGeometry

logger = logging.getLogger(__name__)

OUTPUT_BANDS = {
    'thermal_radiance': 'st_thermal_radiance.tif',
    'transmittance': 'st_atmospheric_transmittance.tif',
    'upwelled_radiance': 'st_upwelled_radiance.tif',
    'downwelled_radiance': 'st_downwelled_radiance.tif',
}


class RasterGeolocation:
    """
    Line/sample to longitude/latitude for a projected raster.

    Holds the CRS as WKT so instances can be sent to worker processes.
    """

    def __init__(self, crs_wkt: str, geometry: SceneGeometry):
        self.crs_wkt = crs_wkt
        self.geometry = geometry

    def __call__(self, line: int, samples: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        samples = np.asarray(samples)
        xs = self.geometry.easting(samples).astype(np.float64)
        ys = np.full(xs.shape, self.geometry.northing(line), dtype=np.float64)
        lon, lat = warp_transform(CRS.from_wkt(self.crs_wkt),
                                  CRS.from_epsg(4326),
                                  xs.tolist(), ys.tolist())
        return np.asarray(lon), np.asarray(lat)


def read_scene(
    thermal_file: Union[str, Path],
    elevation_file: Union[str, Path]
):
    """
    Read the thermal and elevation bands.

    Returns
    -------
    thermal : ndarray
        Thermal radiance with fill replaced by NO_DATA_VALUE
    elevation : ndarray
        Elevation [m]
    geometry : SceneGeometry
    geolocation : RasterGeolocation
    profile : dict
        rasterio profile of the thermal band, for writing outputs
    """
    for path in (thermal_file, elevation_file):
        if not Path(path).exists():
            raise FileNotFoundError(f"Input band not found: {path}")

    logger.info("Reading thermal band [%s]", thermal_file)
    with rasterio.open(thermal_file) as ds:
        if ds.crs is None:
            raise ValueError(f"Thermal band has no CRS: {thermal_file}")
        thermal = ds.read(1).astype(np.float64)
        if ds.nodata is not None:
            thermal[thermal == ds.nodata] = NO_DATA_VALUE
        # Geometry is anchored on the upper-left pixel center
        t = ds.transform
        geometry = SceneGeometry(
            lines=ds.height,
            samples=ds.width,
            ul_x=t.c + t.a * 0.5,
            ul_y=t.f + t.e * 0.5,
            x_pixel_size=t.a,
            y_pixel_size=-t.e,
        )
        crs_wkt = ds.crs.to_wkt()
        profile = ds.profile.copy()

    logger.info("Reading elevation band [%s]", elevation_file)
    with rasterio.open(elevation_file) as ds:
        elevation = ds.read(1).astype(np.float64)

    if elevation.shape != thermal.shape:
        raise ValueError(
            f"Elevation band {elevation.shape} and thermal band "
            f"{thermal.shape} differ in size"
        )

    return (thermal, elevation, geometry,
            RasterGeolocation(crs_wkt, geometry), profile)


def write_pixel_parameters(
    output_dir: Union[str, Path],
    parameters: PixelParameters,
    profile: dict
) -> Dict[str, Path]:
    """Write the four parameter bands; returns band name -> path."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    profile = dict(profile)
    profile.update(driver='GTiff', dtype='float32', count=1,
                   nodata=NO_DATA_VALUE)

    written = {}
    for band, filename in OUTPUT_BANDS.items():
        path = output_dir / filename
        with rasterio.open(path, 'w', **profile) as dst:
            dst.write(getattr(parameters, band).astype(np.float32), 1)
        logger.info("Wrote %s [%s]", band, path)
        written[band] = path

    return written
