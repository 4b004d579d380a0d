"""
Command-line interface for the species distribution pipeline.
"""

import argparse
import logging
import sys

from .config import (
    DEFAULT_REGION,
    DEFAULT_RESOLUTION,
    DEFAULT_SOURCE_CRS,
    DEFAULT_VARIABLES,
    N_BACKGROUND,
    N_FOLDS,
    SEED,
    TEST_FOLD,
    PipelineConfig,
)
from .errors import SDMError
from .pipeline import run_pipeline

logger = logging.getLogger(__name__)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Fit a habitat-suitability model for one species")
    parser.add_argument("occurrences", help="CSV of occurrence records")
    parser.add_argument("boundary", help="Vector file with the study-region outline")
    parser.add_argument("landcover", help="Categorical land-cover raster")
    parser.add_argument("--climate-dir", help="Local directory of bioclim rasters (skips download)")
    parser.add_argument("--cache-dir", default="data/climate", help="Download cache for climate data")
    parser.add_argument("--output-dir", "-o", default="./output", help="Output directory")
    parser.add_argument("--source-crs", default=DEFAULT_SOURCE_CRS, help="CRS of the occurrence coordinates")
    parser.add_argument("--region", default=DEFAULT_REGION, help="ISO3 code for the climate download")
    parser.add_argument("--resolution", default=DEFAULT_RESOLUTION, help="Climate data resolution")
    parser.add_argument("--variables", nargs="+", default=list(DEFAULT_VARIABLES),
                        help="Bioclim variables to use as covariates")
    parser.add_argument("--n-background", type=int, default=N_BACKGROUND, help="Background points to draw")
    parser.add_argument("--folds", type=int, default=N_FOLDS, help="Number of stratified folds")
    parser.add_argument("--test-fold", type=int, default=TEST_FOLD, help="Fold held out for evaluation")
    parser.add_argument("--seed", "-s", type=int, default=SEED, help="Random seed")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        config = PipelineConfig(
            occurrence_path=args.occurrences,
            boundary_path=args.boundary,
            landcover_path=args.landcover,
            climate_dir=args.climate_dir,
            cache_dir=args.cache_dir,
            output_dir=args.output_dir,
            source_crs=args.source_crs,
            region=args.region,
            resolution=args.resolution,
            variables=tuple(args.variables),
            n_background=args.n_background,
            n_folds=args.folds,
            test_fold=args.test_fold,
            seed=args.seed,
        )
    except ValueError as exc:
        parser.error(str(exc))

    try:
        result = run_pipeline(config)
    except SDMError as exc:
        logger.error(f"{type(exc).__name__}: {exc}")
        return 1

    evaluation = result.evaluation
    print(f"Threshold: {evaluation.threshold:.4f}")
    print(f"AUC: {evaluation.auc:.3f}")
    print(f"Presence correctly classified: {evaluation.true_positive}/{evaluation.n_presence}")
    print(f"Background correctly classified: {evaluation.true_negative}/{evaluation.n_background}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
