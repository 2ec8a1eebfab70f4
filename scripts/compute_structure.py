"""
scripts/compute_structure.py

Command-line runner: triangulate landmarks for a scene with known poses.

Examples:
  # Pairs chosen by frustum overlap, SIFT features
  python -m scripts.compute_structure -i cameras.json -f features/ -o out/structure.json

  # Reuse existing matches, two describer types
  python -m scripts.compute_structure -i cameras.json -f features/ -o out/structure.json \
      -m matches/ -g f -d sift,akaze
"""

import argparse
import sys
from typing import List, Optional

from data_io.matches_io import GeometricModel
from data_io.parsing import load_data
from kpsfm.errors import ConfigError, StructureError
from kpsfm.features import describer_types_from_string
from kpsfm.logging_utils import VERBOSE_LEVELS, level_from_name, make_logger
from kpsfm.pipeline.config import StructureConfig
from kpsfm.run_structure import run_structure_from_files


def build_config_from_args(args) -> StructureConfig:
    """
    Build StructureConfig from command line arguments.

    Starts with the --config file (or defaults),
    then overrides with any explicitly provided arguments.
    """
    if args.config:
        try:
            d = load_data(args.config)
        except (OSError, ValueError) as e:
            raise ConfigError(f"Cannot read config file {args.config!r}: {e}") from e
        config = StructureConfig.from_dict(d)
    else:
        config = StructureConfig()

    if args.describerTypes is not None:
        config.describers = describer_types_from_string(args.describerTypes)
    if args.minAngle is not None:
        config.cleanup.min_angle_deg = args.minAngle
    if args.maxEpipolarError is not None:
        config.filtering.max_epipolar_px = args.maxEpipolarError
    if args.numWorkers is not None:
        config.num_workers = args.numWorkers

    config.validate()
    return config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Compute structure from known camera poses",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # =========================================================
    # REQUIRED
    # =========================================================
    parser.add_argument("-i", "--input", type=str, required=True,
                        help="Scene file (JSON/YAML) with views, intrinsics and poses")
    parser.add_argument("-f", "--featuresDirectory", type=str, action="append", required=True,
                        help="Folder containing the extracted features (repeatable)")
    parser.add_argument("-o", "--output", type=str, required=True,
                        help="Output scene file (.json), or .ply for the point cloud only")

    # =========================================================
    # OPTIONAL
    # =========================================================
    parser.add_argument("-d", "--describerTypes", type=str, default=None,
                        help="Describer types, comma separated (default: sift)")
    parser.add_argument("-m", "--matchesDirectory", type=str, default="",
                        help="Folder with pre-computed matches (empty: pairs from frustum overlap)")
    parser.add_argument("-g", "--matchesGeometricModel", type=str, default="f",
                        help="Geometric model of the matches files: f, e or h (default: f)")
    parser.add_argument("--config", type=str, default=None,
                        help="JSON/YAML file with configuration overrides")
    parser.add_argument("--minAngle", type=float, default=None,
                        help="Min max-viewing-angle of a landmark in degrees (default: 2.0)")
    parser.add_argument("--maxEpipolarError", type=float, default=None,
                        help="Max symmetric epipolar distance in pixels (default: 4.0)")
    parser.add_argument("--numWorkers", type=int, default=None,
                        help="Worker threads (default: 1)")
    parser.add_argument("-v", "--verboseLevel", type=str, default="info",
                        choices=list(VERBOSE_LEVELS),
                        help="Verbosity level")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logger = make_logger("kpsfm", level_from_name(args.verboseLevel))

    try:
        config = build_config_from_args(args)
        model = GeometricModel.from_string(args.matchesGeometricModel)

        logger.info(f"[Config] describers={','.join(d.value for d in config.describers)}")
        logger.info(f"[Config] max_epipolar_px={config.filtering.max_epipolar_px} "
                    f"min_angle_deg={config.cleanup.min_angle_deg} num_workers={config.num_workers}")

        result = run_structure_from_files(
            scene_path=args.input,
            features_dirs=args.featuresDirectory,
            output_path=args.output,
            config=config,
            matches_dir=args.matchesDirectory or None,
            geometric_model=model,
            logger=logger,
        )
    except StructureError as e:
        logger.error(str(e))
        return 1

    logger.info(f"[Done] {len(result.scene.landmarks)} landmarks from {len(result.pairs)} pairs")
    return 0


if __name__ == "__main__":
    sys.exit(main())
