"""
Synthetic island fixtures: climate rasters, land cover, outline and occurrences.

The island is a circle around (14.2, 35.8) in a 0.4 x 0.4 degree WGS84 grid.
Occurrences are recorded in UTM zone 33N and land cover is delivered on a
500 m UTM grid, so the reprojection paths are exercised.
"""

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
import rasterio
from pyproj import Transformer
from rasterio.crs import CRS
from rasterio.transform import from_origin
from shapely.geometry import Point

from islandsdm.layers import EnvironmentalStack, Layer, build_environment, climate_sources
from islandsdm.occurrences import load_boundary

WEST, NORTH = 14.0, 36.0
RES = 0.01
SIZE = 40
CENTRE = (14.2, 35.8)
ISLAND_RADIUS = 0.15
PRESENCE_CENTRE = (14.22, 35.82)
PRESENCE_RADIUS = 0.1
UTM = "EPSG:32633"
LANDCOVER_CODES = (10, 20, 30)
VARIABLES = ("bio_1", "bio_4", "bio_12")
N_OCCURRENCES = 132


def _cell_centres():
    rows, cols = np.indices((SIZE, SIZE))
    return WEST + (cols + 0.5) * RES, NORTH - (rows + 0.5) * RES


def _write(path, data, transform, crs, nodata):
    with rasterio.open(
        path, "w",
        driver="GTiff",
        height=data.shape[0],
        width=data.shape[1],
        count=1,
        dtype=data.dtype,
        crs=crs,
        transform=transform,
        nodata=nodata,
    ) as dst:
        dst.write(data, 1)


def make_layer(name, data, categorical=False, west=WEST, north=NORTH, res=RES):
    data = np.asarray(data, dtype=np.float64)
    return Layer(name, data, from_origin(west, north, res, res), CRS.from_epsg(4326), categorical)


def make_stack(layers: dict, categorical=()) -> EnvironmentalStack:
    """In-memory stack from {name: 2-D array}."""
    return EnvironmentalStack([
        make_layer(name, data, categorical=name in categorical) for name, data in layers.items()
    ])


@pytest.fixture
def climate_dir(tmp_path):
    lons, lats = _cell_centres()
    ocean = np.hypot(lons - CENTRE[0], lats - CENTRE[1]) > 0.18
    values = {
        "bio_1": 180 - 40 * (lats - 35.6),
        "bio_4": 400 + 100 * (lons - 14.0),
        "bio_12": 500 + 3000 * (lats - 35.6) * (lons - 14.0),
    }

    directory = tmp_path / "climate"
    directory.mkdir()
    for name, data in values.items():
        data = data.astype(np.float32)
        data[ocean] = -9999
        _write(directory / f"wc2.1_30s_{name}.tif", data, from_origin(WEST, NORTH, RES, RES),
               "EPSG:4326", -9999)
    return directory


@pytest.fixture
def landcover_path(tmp_path):
    to_utm = Transformer.from_crs("EPSG:4326", UTM, always_xy=True)
    east = WEST + SIZE * RES
    south = NORTH - SIZE * RES
    xs, ys = to_utm.transform([WEST, east, WEST, east], [NORTH, NORTH, south, south])

    left, top = min(xs) - 2000, max(ys) + 2000
    width = int((max(xs) - min(xs) + 4000) // 500) + 1
    height = int((max(ys) - min(ys) + 4000) // 500) + 1

    rows, cols = np.indices((height, width))
    codes = np.array(LANDCOVER_CODES, dtype=np.uint8)[(rows // 8 + cols // 8) % 3]
    codes[:2, :] = 0

    path = tmp_path / "landcover.tif"
    _write(path, codes, from_origin(left, top, 500, 500), UTM, 0)
    return path


@pytest.fixture
def boundary_path(tmp_path):
    island = gpd.GeoDataFrame(
        {"name": ["island"]},
        geometry=[Point(CENTRE).buffer(ISLAND_RADIUS, 64)],
        crs="EPSG:4326",
    ).to_crs(UTM)
    path = tmp_path / "island.gpkg"
    island.to_file(path, driver="GPKG")
    return path


def occurrence_table(n=N_OCCURRENCES, seed=7) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    r = PRESENCE_RADIUS * np.sqrt(rng.uniform(size=n))
    theta = rng.uniform(0, 2 * np.pi, size=n)
    lons = PRESENCE_CENTRE[0] + r * np.cos(theta)
    lats = PRESENCE_CENTRE[1] + r * np.sin(theta)

    to_utm = Transformer.from_crs("EPSG:4326", UTM, always_xy=True)
    x, y = to_utm.transform(lons, lats)
    return pd.DataFrame({"record": np.arange(n), "longitude": x, "latitude": y})


@pytest.fixture
def occurrence_path(tmp_path):
    path = tmp_path / "occurrences.csv"
    occurrence_table().to_csv(path, index=False)
    return path


@pytest.fixture
def boundary(boundary_path):
    return load_boundary(boundary_path)


@pytest.fixture
def stack(climate_dir, landcover_path, boundary):
    climate = climate_sources(VARIABLES, climate_dir=climate_dir)
    return build_environment(climate, landcover_path, boundary)
