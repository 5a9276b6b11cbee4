#!/usr/bin/env python3
"""
Generate Landsat Surface Temperature Atmospheric Parameters

This script derives transmission, upwelled radiance and downwelled
radiance at every MODTRAN grid point and elevation, then interpolates
them to every pixel of a Landsat scene.

Run it from (or point --work-dir at) the directory holding the grid
point files and MODTRAN run directories. ST_DATA_DIR must name the
directory with the sensor spectral response tables.

Usage:
    python generate_atmospheric_parameters.py [options]

Options:
    --satellite NAME    LANDSAT_4, LANDSAT_5, LANDSAT_7 or LANDSAT_8
    --instrument NAME   TM, ETM or OLI_TIRS
    --work-dir DIR      Grid point files and MODTRAN runs. Default: .
    --thermal FILE      Thermal band GeoTIFF (enables the pixel pass)
    --elevation FILE    Elevation band GeoTIFF [m]
    --output-dir DIR    Where outputs are written. Default: .
    --parallel N        Number of parallel workers
    --dry-run           Check inputs exist without processing
    --debug             Verbose logging

Example:
    # Grid point parameters only
    python generate_atmospheric_parameters.py --satellite LANDSAT_8 \\
        --instrument OLI_TIRS

    # Grid points and pixels, 4 workers
    python generate_atmospheric_parameters.py --satellite LANDSAT_8 \\
        --instrument OLI_TIRS --thermal b10_radiance.tif \\
        --elevation elevation.tif --parallel 4
"""

import argparse
import logging
import sys
from pathlib import Path

from grid_points import (
    GRID_ELEVATIONS,
    GRID_POINTS_BIN,
    GRID_POINTS_HDR,
    MODTRAN_ELEVATIONS,
    load_simulation_inputs,
)
from modtran_interface import (
    ATMOSPHERIC_PARAMETERS,
    USED_POINTS,
    ModtranAtmosphere,
    validate_environment,
    write_atmospheric_parameters,
    write_used_points,
)
from pixel_interpolation import calculate_pixel_parameters
from radiance import SensorVariant
from scene_io import read_scene, write_pixel_parameters


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description='Generate Landsat ST atmospheric parameters',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    parser.add_argument(
        '--satellite',
        type=str,
        required=True,
        help='Satellite name, e.g. LANDSAT_8'
    )

    parser.add_argument(
        '--instrument',
        type=str,
        required=True,
        help='Instrument name, e.g. OLI_TIRS'
    )

    parser.add_argument(
        '--work-dir',
        type=str,
        default='.',
        help='Directory with grid point files and MODTRAN runs'
    )

    parser.add_argument(
        '--thermal',
        type=str,
        default=None,
        help='Thermal band GeoTIFF; enables the per-pixel pass'
    )

    parser.add_argument(
        '--elevation',
        type=str,
        default=None,
        help='Elevation band GeoTIFF [m]'
    )

    parser.add_argument(
        '--output-dir',
        type=str,
        default='.',
        help='Directory for output files'
    )

    parser.add_argument(
        '--parallel',
        type=int,
        default=1,
        metavar='N',
        help='Number of parallel workers. Default: 1 (sequential)'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Check files exist without processing'
    )

    parser.add_argument(
        '--debug',
        action='store_true',
        help='Verbose logging'
    )

    args = parser.parse_args(argv)
    if (args.thermal is None) != (args.elevation is None):
        parser.error('--thermal and --elevation must be given together')
    return args


def find_missing_inputs(args):
    """Required input files that do not exist."""
    work_dir = Path(args.work_dir)
    required = [work_dir / name for name in (
        GRID_POINTS_HDR, GRID_POINTS_BIN, MODTRAN_ELEVATIONS, GRID_ELEVATIONS)]
    if args.thermal is not None:
        required += [Path(args.thermal), Path(args.elevation)]
    return [str(path) for path in required if not path.exists()]


def main(argv=None):
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    print("Landsat ST Atmospheric Parameters")
    print("=" * 50)

    try:
        sensor = SensorVariant.from_metadata(args.satellite, args.instrument)
    except ValueError as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    if not validate_environment(sensor):
        print("\nERROR: Environment validation failed.")
        print("Please check the ST_DATA_DIR environment variable.")
        sys.exit(1)

    print(f"\nSensor: {sensor.name}")
    print(f"Work directory: {args.work_dir}")
    print(f"Output directory: {args.output_dir}")
    print(f"Pixel pass: {args.thermal is not None}")
    print(f"Parallel workers: {args.parallel}")

    print("\nChecking input files...")
    missing_files = find_missing_inputs(args)
    if missing_files:
        print("ERROR: Missing input files:")
        for f in missing_files:
            print(f"  {f}")
        sys.exit(1)

    print("  All input files found.")

    if args.dry_run:
        print("\nDry run complete. Exiting.")
        return

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    try:
        print("\nSolving grid point parameters...")
        inputs = load_simulation_inputs(args.work_dir)
        atmosphere = ModtranAtmosphere(sensor, work_dir=args.work_dir)
        solved = atmosphere.process_grid(inputs, n_workers=args.parallel,
                                         verbose=True)

        write_atmospheric_parameters(solved,
                                     output_dir / ATMOSPHERIC_PARAMETERS)
        write_used_points(solved, output_dir / USED_POINTS)
        print(f"  Output: {output_dir / ATMOSPHERIC_PARAMETERS}")

        if args.thermal is not None:
            print("\nInterpolating pixel parameters...")
            thermal, elevation, geometry, geolocation, profile = read_scene(
                args.thermal, args.elevation)
            pixels = calculate_pixel_parameters(
                solved, thermal, elevation, geometry, geolocation,
                n_workers=args.parallel
            )
            written = write_pixel_parameters(output_dir, pixels, profile)
            for path in written.values():
                print(f"  Output: {path}")

    except (OSError, ValueError, RuntimeError, MemoryError) as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    print("\n" + "=" * 50)
    print("Processing complete!")


if __name__ == '__main__':
    main()
