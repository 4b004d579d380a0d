"""
Background sampling and feature-table construction.
"""

import logging

import numpy as np
import pandas as pd

from .errors import SamplingError
from .layers import EnvironmentalStack
from .occurrences import coordinates

logger = logging.getLogger(__name__)


def sample_background(
    stack: EnvironmentalStack,
    n_samples: int,
    seed: int = 42,
) -> pd.DataFrame:
    """
    Draw random background (pseudo-absence) locations from valid cells.

    Cells are drawn without replacement from those where every layer has a
    value; the result holds cell-centre coordinates only. The same seed
    always yields the same sample.

    Args:
        stack: Environmental stack to sample from
        n_samples: Number of background points to draw
        seed: Random seed for reproducibility

    Returns:
        DataFrame with ``longitude`` and ``latitude`` columns
    """
    valid_cells = np.flatnonzero(stack.valid_mask())
    if valid_cells.size == 0:
        raise SamplingError("Environmental stack has no cells with data for every layer")

    if n_samples > valid_cells.size:
        logger.warning(
            f"Only {valid_cells.size} valid cells available (requested {n_samples}); "
            "using all of them"
        )
        n_samples = valid_cells.size

    rng = np.random.default_rng(seed)
    chosen = np.sort(rng.choice(valid_cells, size=n_samples, replace=False))

    _, w, _ = stack.shape
    rows, cols = np.divmod(chosen, w)
    lons, lats = stack.pixel_to_coords(rows, cols)

    return pd.DataFrame({"longitude": lons, "latitude": lats})


def label_points(presence: pd.DataFrame, background: pd.DataFrame) -> pd.DataFrame:
    """Stack presence (label 1) and background (label 0) coordinates."""
    frames = [
        pd.DataFrame({
            "longitude": points["longitude"].to_numpy(dtype=float),
            "latitude": points["latitude"].to_numpy(dtype=float),
            "label": label,
        })
        for points, label in ((presence, 1), (background, 0))
    ]
    return pd.concat(frames, ignore_index=True)


def extract_features(stack: EnvironmentalStack, labelled: pd.DataFrame) -> pd.DataFrame:
    """
    Build the feature table: one row per point, label plus one column per layer.

    Points with no data for any layer are excluded; coordinates are not
    carried into the table.
    """
    values, valid_mask = stack.sample_at_coords(coordinates(labelled))

    n_invalid = int((~valid_mask).sum())
    if n_invalid > 0:
        by_label = labelled.loc[~valid_mask, "label"].value_counts().to_dict()
        logger.warning(f"{n_invalid} points without data for every layer excluded {by_label}")

    schema = stack.schema
    features = pd.DataFrame(values[valid_mask], columns=list(schema.covariates))
    features.insert(0, schema.label, labelled["label"].to_numpy()[valid_mask].astype(int))

    for name in schema.categorical:
        features[name] = features[name].astype(int)

    n_pos = int(features[schema.label].sum())
    logger.info(
        f"Feature table: {len(features)} rows (presence: {n_pos}, background: {len(features) - n_pos})"
    )
    return features
