"""
Whole-surface prediction and result export.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import geopandas as gpd
import numpy as np
import pandas as pd
import rasterio
from rasterio.crs import CRS
from rasterio.transform import Affine
from tqdm import tqdm

from .layers import EnvironmentalStack
from .model import Evaluation, SuitabilityModel

logger = logging.getLogger(__name__)


def predict_surface(
    model: SuitabilityModel,
    stack: EnvironmentalStack,
    batch_size: int = 15000,
) -> np.ndarray:
    """
    Probability of occurrence for every cell of the stack.

    Cells lacking a value for any layer stay NaN. Cells whose categorical
    level never occurred in training are also set to NaN, since the model
    has no coefficient for them.

    Returns:
        (H, W) float32 array of probabilities
    """
    h, w, _ = stack.shape
    values = stack.get_all_values()
    valid = ~np.isnan(values).any(axis=1)
    scores = np.full(h * w, np.nan, dtype=np.float32)

    cells = pd.DataFrame(values[valid], columns=stack.names)
    for name in stack.categorical:
        cells[name] = cells[name].astype(int)

    valid_scores = np.empty(len(cells), dtype=np.float32)
    for i in tqdm(range(0, len(cells), batch_size), desc="Predicting"):
        end = min(i + batch_size, len(cells))
        valid_scores[i:end] = model.predict_proba(cells.iloc[i:end])

    for name, levels in model.unseen_levels(cells).items():
        unseen = cells[name].isin(levels).to_numpy()
        logger.warning(
            f"  {name}: levels {levels} not seen in training, {int(unseen.sum())} cells set to no data"
        )
        valid_scores[unseen] = np.nan
    scores[valid] = valid_scores

    return scores.reshape(h, w)


def threshold_surface(probability: np.ndarray, threshold: float) -> np.ndarray:
    """1 where probability >= threshold, 0 below, NaN where there is no data."""
    suitable = np.where(probability >= threshold, 1.0, 0.0).astype(np.float32)
    suitable[np.isnan(probability)] = np.nan
    return suitable


def write_raster(path: Path, data: np.ndarray, transform: Affine, crs: CRS) -> None:
    """Write a single-band float32 GeoTIFF with NaN as nodata."""
    with rasterio.open(
        path, "w",
        driver="GTiff",
        height=data.shape[0],
        width=data.shape[1],
        count=1,
        dtype=np.float32,
        crs=crs,
        transform=transform,
        nodata=np.nan,
        compress="lzw",
    ) as dst:
        dst.write(data.astype(np.float32), 1)


@dataclass
class SuitabilityResult:
    """Container for the outputs of a pipeline run."""

    probability: np.ndarray  # (H, W) probability surface
    suitability: np.ndarray  # (H, W) binary surface
    transform: Affine
    crs: CRS
    threshold: float
    evaluation: Evaluation
    model: SuitabilityModel
    features: pd.DataFrame
    folds: np.ndarray
    occurrences: Optional[gpd.GeoDataFrame] = None

    def summary(self) -> dict:
        valid = ~np.isnan(self.probability)
        return {
            "threshold": self.threshold,
            "evaluation": self.evaluation.to_dict(),
            "training": self.model.train_stats,
            "n_features": len(self.features),
            "fold_sizes": {int(k): int(v) for k, v in zip(*np.unique(self.folds, return_counts=True))},
            "n_valid_cells": int(valid.sum()),
            "n_suitable_cells": int(np.nansum(self.suitability)),
            "probability_range": [
                float(np.nanmin(self.probability)) if valid.any() else None,
                float(np.nanmax(self.probability)) if valid.any() else None,
            ],
        }

    def save(self, output_dir: str | Path) -> dict[str, Path]:
        """Save rasters, feature table, model and summary to ``output_dir``."""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        paths = {}

        paths["probability"] = output_dir / "probability.tif"
        write_raster(paths["probability"], self.probability, self.transform, self.crs)
        logger.info(f"Saved probability raster: {paths['probability']}")

        paths["suitability"] = output_dir / "suitability.tif"
        write_raster(paths["suitability"], self.suitability, self.transform, self.crs)
        logger.info(f"Saved suitability raster: {paths['suitability']}")

        paths["features"] = output_dir / "features.csv"
        features = self.features.assign(fold=self.folds)
        features.to_csv(paths["features"], index=False)

        paths["model"] = output_dir / "model.joblib"
        self.model.save(paths["model"])

        if self.occurrences is not None:
            paths["occurrences"] = output_dir / "occurrences.geojson"
            self.occurrences.to_file(paths["occurrences"], driver="GeoJSON")

        paths["summary"] = output_dir / "summary.json"
        with open(paths["summary"], "w") as f:
            json.dump(self.summary(), f, indent=2)
        logger.info(f"Saved summary: {paths['summary']}")

        return paths
