"""
Run configuration for the species distribution pipeline.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# Reference case: a small Mediterranean island, occurrences recorded in UTM 33N
DEFAULT_SOURCE_CRS = "EPSG:32633"
DEFAULT_REGION = "MLT"
DEFAULT_RESOLUTION = "30s"

# Bioclim subset chosen by hand: annual mean temperature,
# temperature seasonality, annual precipitation
DEFAULT_VARIABLES = ("bio_1", "bio_4", "bio_12")

WORLDCLIM_COUNTRY_URL = (
    "https://geodata.ucdavis.edu/climate/worldclim/2_1/tiles/iso/"
    "{region}_wc2.1_{resolution}_{variable}.tif"
)

N_BACKGROUND = 200
N_FOLDS = 5
TEST_FOLD = 1
SEED = 42


@dataclass
class PipelineConfig:
    """Inputs and parameters for a single pipeline run."""

    occurrence_path: Path
    boundary_path: Path
    landcover_path: Path
    climate_dir: Optional[Path] = None
    cache_dir: Path = Path("data/climate")
    output_dir: Optional[Path] = None

    source_crs: str = DEFAULT_SOURCE_CRS
    lon_col: str = "longitude"
    lat_col: str = "latitude"

    region: str = DEFAULT_REGION
    resolution: str = DEFAULT_RESOLUTION
    variables: tuple[str, ...] = DEFAULT_VARIABLES
    climate_pattern: str = "*{variable}.tif"
    url_template: str = WORLDCLIM_COUNTRY_URL
    landcover_name: str = "landcover"

    n_background: int = N_BACKGROUND
    n_folds: int = N_FOLDS
    test_fold: int = TEST_FOLD
    seed: int = SEED

    def __post_init__(self):
        self.occurrence_path = Path(self.occurrence_path)
        self.boundary_path = Path(self.boundary_path)
        self.landcover_path = Path(self.landcover_path)
        self.cache_dir = Path(self.cache_dir)
        if self.climate_dir is not None:
            self.climate_dir = Path(self.climate_dir)
        if self.output_dir is not None:
            self.output_dir = Path(self.output_dir)
        self.variables = tuple(self.variables)

        if self.n_background < 1:
            raise ValueError("n_background must be positive")
        if self.n_folds < 2:
            raise ValueError("n_folds must be at least 2")
        if not 1 <= self.test_fold <= self.n_folds:
            raise ValueError(f"test_fold must be between 1 and {self.n_folds}")
