"""
Main pipeline: occurrences to habitat-suitability map.
"""

import logging
from typing import Optional

from .config import PipelineConfig
from .layers import LayerKey, LayerStore, build_environment, climate_sources
from .model import train_and_evaluate
from .occurrences import load_boundary, load_occurrences
from .predict import SuitabilityResult, predict_surface, threshold_surface
from .sampling import extract_features, label_points, sample_background

logger = logging.getLogger(__name__)


def run_pipeline(
    config: PipelineConfig,
    store: Optional[LayerStore] = None,
) -> SuitabilityResult:
    """
    Run the five stages in order and return the suitability outputs.

    Args:
        config: Inputs and parameters for the run
        store: Climate file store; built from the config when omitted and
            no local climate directory is configured

    Returns:
        SuitabilityResult with probability and binary surfaces
    """
    logger.info("=" * 60)
    logger.info(f"Species distribution model: {config.occurrence_path.name}")
    logger.info("=" * 60)

    logger.info("[1/5] Loading occurrences...")
    occurrences = load_occurrences(
        config.occurrence_path, config.source_crs, config.lon_col, config.lat_col
    )
    boundary = load_boundary(config.boundary_path)

    logger.info("[2/5] Building environmental layers...")
    if config.climate_dir is None and store is None:
        store = LayerStore(config.cache_dir, url_template=config.url_template)
    climate = climate_sources(
        config.variables,
        climate_dir=config.climate_dir,
        pattern=config.climate_pattern,
        store=store,
        key=LayerKey(config.region, "bio", config.resolution),
    )
    stack = build_environment(
        climate, config.landcover_path, boundary, landcover_name=config.landcover_name
    )

    logger.info("[3/5] Sampling background points and extracting features...")
    background = sample_background(stack, config.n_background, seed=config.seed)
    logger.info(f"  Background points: {len(background)}")
    labelled = label_points(occurrences, background)
    features = extract_features(stack, labelled)

    logger.info("[4/5] Training and evaluating GLM...")
    model, evaluation, folds = train_and_evaluate(
        features,
        stack.schema,
        n_folds=config.n_folds,
        test_fold=config.test_fold,
        seed=config.seed,
    )

    logger.info("[5/5] Predicting suitability surface...")
    probability = predict_surface(model, stack)
    suitability = threshold_surface(probability, evaluation.threshold)

    result = SuitabilityResult(
        probability=probability,
        suitability=suitability,
        transform=stack.transform,
        crs=stack.crs,
        threshold=evaluation.threshold,
        evaluation=evaluation,
        model=model,
        features=features,
        folds=folds,
        occurrences=occurrences,
    )

    summary = result.summary()
    logger.info(
        f"  Suitable cells: {summary['n_suitable_cells']:,} of {summary['n_valid_cells']:,}"
    )

    if config.output_dir:
        result.save(config.output_dir)

    logger.info("=" * 60)
    logger.info("COMPLETE")
    logger.info("=" * 60)

    return result
