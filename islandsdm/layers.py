"""
Environmental raster layers: acquisition, harmonisation and stacking.

Continuous bioclimatic layers define the common grid. The categorical
land-cover layer is reprojected, masked to the study region and resampled
onto that grid with nearest-neighbour resampling so category codes survive.
"""

import logging
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

import geopandas as gpd
import numpy as np
import rasterio
import requests
from rasterio.crs import CRS
from rasterio.enums import Resampling
from rasterio.errors import RasterioIOError
from rasterio.features import geometry_mask
from rasterio.transform import Affine
from rasterio.warp import calculate_default_transform, reproject, transform as transform_coords
from rasterio.windows import Window
from rasterio.windows import transform as window_transform
from tqdm import tqdm

from .config import WORLDCLIM_COUNTRY_URL
from .errors import DataError, GeometryError

logger = logging.getLogger(__name__)

GEOGRAPHIC_CRS = CRS.from_epsg(4326)


@dataclass(frozen=True)
class LayerKey:
    """Identifies a remote climate file: region, variable class, resolution."""

    region: str
    variable: str
    resolution: str


class LayerStore:
    """
    Cache-aside access to remote climate files.

    ``acquire`` returns the local path of a file, downloading it only when
    the ``exists`` check reports a miss.
    """

    def __init__(
        self,
        cache_dir: str | Path,
        url_template: str = WORLDCLIM_COUNTRY_URL,
        exists: Optional[Callable[[Path], bool]] = None,
        timeout: float = 120.0,
    ):
        self.cache_dir = Path(cache_dir)
        self.url_template = url_template
        self.timeout = timeout
        self._exists = exists or Path.exists

    def url_for(self, key: LayerKey) -> str:
        return self.url_template.format(
            region=key.region, variable=key.variable, resolution=key.resolution
        )

    def path_for(self, key: LayerKey) -> Path:
        return self.cache_dir / self.url_for(key).rsplit("/", 1)[-1]

    def acquire(self, key: LayerKey) -> Path:
        """Return a local path for ``key``, fetching it on a cache miss."""
        path = self.path_for(key)
        if self._exists(path):
            logger.info(f"Climate data {path.name} already exists, proceeding")
            return path

        self._download(self.url_for(key), path)
        return path

    def _download(self, url: str, path: Path) -> None:
        logger.info(f"Downloading {url}")
        path.parent.mkdir(parents=True, exist_ok=True)
        partial = path.with_name(path.name + ".part")

        try:
            with requests.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                total = int(response.headers.get("content-length", 0))
                with open(partial, "wb") as f, tqdm(
                    total=total, unit="B", unit_scale=True, desc=path.name
                ) as pbar:
                    for chunk in response.iter_content(chunk_size=1 << 20):
                        f.write(chunk)
                        pbar.update(len(chunk))
        except requests.RequestException as exc:
            partial.unlink(missing_ok=True)
            raise DataError(f"Failed to download {url}: {exc}") from exc

        partial.replace(path)
        logger.info(f"  Cached to {path}")


@dataclass
class Layer:
    """A single raster band; NaN marks no data."""

    name: str
    data: np.ndarray
    transform: Affine
    crs: CRS
    categorical: bool = False

    @property
    def shape(self) -> tuple[int, int]:
        return self.data.shape

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        return rasterio.transform.array_bounds(*self.shape, self.transform)

    def same_grid(self, other: "Layer") -> bool:
        return (
            self.crs == other.crs
            and self.shape == other.shape
            and self.transform.almost_equals(other.transform)
        )


@dataclass(frozen=True)
class FeatureSchema:
    """Covariate columns of a feature table and which of them are categorical."""

    covariates: tuple[str, ...]
    categorical: tuple[str, ...] = ()
    label: str = "label"

    @property
    def continuous(self) -> tuple[str, ...]:
        return tuple(c for c in self.covariates if c not in self.categorical)


class EnvironmentalStack:
    """
    Named layers sharing one grid, held as an (H, W, bands) array.

    Read-only once built; used both for feature extraction and for
    whole-surface prediction.
    """

    def __init__(self, layers: Sequence[Layer]):
        self.names = [layer.name for layer in layers]
        self.categorical = tuple(layer.name for layer in layers if layer.categorical)
        self.values = np.stack([layer.data for layer in layers], axis=-1).astype(np.float64)
        self.values.setflags(write=False)
        self.transform = layers[0].transform
        self.crs = layers[0].crs

    @property
    def shape(self) -> tuple[int, int, int]:
        return self.values.shape

    @property
    def schema(self) -> FeatureSchema:
        return FeatureSchema(covariates=tuple(self.names), categorical=self.categorical)

    def valid_mask(self) -> np.ndarray:
        """(H, W) boolean array, True where every layer has a value."""
        return ~np.isnan(self.values).any(axis=-1)

    def coords_to_pixel(self, lon: float, lat: float) -> tuple[int, int]:
        """Geographic coordinates to (row, col); may fall outside the grid."""
        x, y = self._from_geographic([lon], [lat])
        row, col = rasterio.transform.rowcol(self.transform, x[0], y[0])
        return int(row), int(col)

    def pixel_to_coords(self, row, col) -> tuple:
        """Cell centre(s) as geographic (lon, lat); accepts scalars or arrays."""
        xs, ys = rasterio.transform.xy(self.transform, np.atleast_1d(row), np.atleast_1d(col))
        lons, lats = self._to_geographic(xs, ys)
        if np.ndim(row) == 0:
            return float(lons[0]), float(lats[0])
        return np.asarray(lons), np.asarray(lats)

    def sample_at_coords(
        self, coords: Sequence[tuple[float, float]]
    ) -> tuple[np.ndarray, np.ndarray]:
        """
        Look up every layer at each (lon, lat).

        Returns:
            Tuple of (values, valid_mask)
            - values: array of shape (n_points, n_layers), NaN outside coverage
            - valid_mask: True where the point has a value for every layer
        """
        h, w, bands = self.shape
        values = np.full((len(coords), bands), np.nan)
        if not coords:
            return values, np.zeros(0, dtype=bool)

        lons, lats = zip(*coords)
        xs, ys = self._from_geographic(lons, lats)
        rows, cols = rasterio.transform.rowcol(self.transform, xs, ys)
        rows, cols = np.asarray(rows), np.asarray(cols)

        inside = (rows >= 0) & (rows < h) & (cols >= 0) & (cols < w)
        values[inside] = self.values[rows[inside], cols[inside], :]
        valid_mask = ~np.isnan(values).any(axis=1)
        return values, valid_mask

    def get_all_values(self) -> np.ndarray:
        """Flatten to (H * W, n_layers) in row-major cell order."""
        h, w, bands = self.shape
        return self.values.reshape(h * w, bands)

    def _from_geographic(self, lons, lats):
        if self.crs == GEOGRAPHIC_CRS:
            return list(lons), list(lats)
        return transform_coords(GEOGRAPHIC_CRS, self.crs, list(lons), list(lats))

    def _to_geographic(self, xs, ys):
        if self.crs == GEOGRAPHIC_CRS:
            return list(xs), list(ys)
        return transform_coords(self.crs, GEOGRAPHIC_CRS, list(xs), list(ys))


def _crop_window(
    transform: Affine,
    width: int,
    height: int,
    bounds: Sequence[float],
    pad: int = 0,
) -> Window:
    """Pixel window covering ``bounds`` (west, south, east, north), clipped to the grid."""
    west, south, east, north = bounds
    inv = ~transform
    c0, r0 = inv @ (west, north)
    c1, r1 = inv @ (east, south)

    col_start = max(0, math.floor(min(c0, c1)) - pad)
    col_stop = min(width, math.ceil(max(c0, c1)) + pad)
    row_start = max(0, math.floor(min(r0, r1)) - pad)
    row_stop = min(height, math.ceil(max(r0, r1)) + pad)

    if col_start >= col_stop or row_start >= row_stop:
        raise GeometryError(f"Study region {tuple(bounds)} does not overlap the raster")

    return Window(col_start, row_start, col_stop - col_start, row_stop - row_start)


def _read_masked(src, band: int, window: Optional[Window] = None) -> np.ndarray:
    if not 1 <= band <= src.count:
        raise DataError(f"{src.name} has {src.count} bands, band {band} requested")
    data = src.read(band, window=window, masked=True)
    return data.astype(np.float64).filled(np.nan)


def load_continuous_layer(
    path: str | Path,
    name: str,
    boundary: gpd.GeoSeries,
    band: int = 1,
) -> Layer:
    """
    Read one continuous band cropped to the extent of ``boundary``.

    Cells are cropped, not masked: values outside the outline but inside its
    bounding box are kept. The window is padded by one cell so the layer
    covers the outline even when an edge falls on a grid line.
    """
    try:
        with rasterio.open(path) as src:
            if src.crs is None:
                raise GeometryError(f"Raster {path} has no CRS")
            bounds = boundary.to_crs(src.crs).total_bounds
            window = _crop_window(src.transform, src.width, src.height, bounds, pad=1)
            data = _read_masked(src, band, window)
            return Layer(name, data, src.window_transform(window), src.crs)
    except RasterioIOError as exc:
        raise DataError(f"Cannot open raster {path}: {exc}") from exc


def load_categorical_layer(
    path: str | Path,
    name: str,
    boundary: gpd.GeoSeries,
    template: Layer,
    band: int = 1,
) -> Layer:
    """
    Align a categorical raster with ``template``.

    Reproject to the template CRS, crop and mask to ``boundary``, then
    resample onto the template grid. Every step uses nearest-neighbour
    resampling, so only category codes present in the source can appear.
    """
    try:
        with rasterio.open(path) as src:
            if src.crs is None:
                raise GeometryError(f"Raster {path} has no CRS")
            src_crs = src.crs
            bounds = boundary.to_crs(src_crs).total_bounds
            window = _crop_window(src.transform, src.width, src.height, bounds, pad=2)
            source = _read_masked(src, band, window)
            src_transform = src.window_transform(window)
    except RasterioIOError as exc:
        raise DataError(f"Cannot open raster {path}: {exc}") from exc

    src_height, src_width = source.shape
    left, bottom, right, top = rasterio.transform.array_bounds(src_height, src_width, src_transform)
    dst_transform, dst_width, dst_height = calculate_default_transform(
        src_crs, template.crs, src_width, src_height, left, bottom, right, top
    )
    projected = np.full((dst_height, dst_width), np.nan)
    reproject(
        source, projected,
        src_transform=src_transform, src_crs=src_crs, src_nodata=np.nan,
        dst_transform=dst_transform, dst_crs=template.crs, dst_nodata=np.nan,
        resampling=Resampling.nearest,
    )

    outline = boundary.to_crs(template.crs)
    crop = _crop_window(dst_transform, dst_width, dst_height, outline.total_bounds)
    cropped = projected[crop.toslices()].copy()
    crop_transform = window_transform(crop, dst_transform)
    outside = geometry_mask(list(outline), out_shape=cropped.shape, transform=crop_transform)
    cropped[outside] = np.nan

    resampled = np.full(template.shape, np.nan)
    reproject(
        cropped, resampled,
        src_transform=crop_transform, src_crs=template.crs, src_nodata=np.nan,
        dst_transform=template.transform, dst_crs=template.crs, dst_nodata=np.nan,
        resampling=Resampling.nearest,
    )

    if np.isnan(resampled).all():
        raise GeometryError(f"Layer {name} has no data on the common grid")

    n_classes = len(np.unique(resampled[~np.isnan(resampled)]))
    logger.info(f"  {name}: {n_classes} categories on {template.shape[0]} x {template.shape[1]} grid")
    return Layer(name, resampled, template.transform, template.crs, categorical=True)


def stack_layers(layers: Sequence[Layer]) -> EnvironmentalStack:
    """Combine layers into a stack; all must share CRS, extent and resolution."""
    if not layers:
        raise GeometryError("No layers to stack")

    names = [layer.name for layer in layers]
    if len(set(names)) != len(names):
        raise GeometryError(f"Duplicate layer names: {names}")

    reference = layers[0]
    for layer in layers[1:]:
        if not layer.same_grid(reference):
            raise GeometryError(
                f"Layer {layer.name} grid ({layer.crs}, {layer.shape}) does not match "
                f"{reference.name} ({reference.crs}, {reference.shape})"
            )

    return EnvironmentalStack(layers)


def band_number(variable: str) -> int:
    """Band index of a bioclim variable name, e.g. ``bio_12`` -> 12."""
    match = re.search(r"(\d+)$", variable)
    if match is None:
        raise DataError(f"Cannot derive a band number from variable {variable!r}")
    return int(match.group(1))


def climate_sources(
    variables: Sequence[str],
    climate_dir: Optional[Path] = None,
    pattern: str = "*{variable}.tif",
    store: Optional[LayerStore] = None,
    key: Optional[LayerKey] = None,
) -> list[tuple[str, Path, int]]:
    """
    Resolve each variable to (name, path, band).

    A local directory holds one single-band file per variable, matched by
    ``pattern``. Otherwise the multi-band file for ``key`` is acquired from
    ``store`` and each variable maps to its band.
    """
    if climate_dir is not None:
        sources = []
        for variable in variables:
            matches = sorted(Path(climate_dir).glob(pattern.format(variable=variable)))
            if len(matches) != 1:
                raise DataError(
                    f"Expected one file for {variable} in {climate_dir}, found {len(matches)}"
                )
            sources.append((variable, matches[0], 1))
        return sources

    if store is None or key is None:
        raise DataError("Either a local climate directory or a layer store is required")

    path = store.acquire(key)
    return [(variable, path, band_number(variable)) for variable in variables]


def build_environment(
    climate: Sequence[tuple[str, Path, int]],
    landcover_path: str | Path,
    boundary: gpd.GeoSeries,
    landcover_name: str = "landcover",
) -> EnvironmentalStack:
    """
    Build the environmental stack: cropped climate layers plus land cover.

    Args:
        climate: (name, path, band) for each continuous layer, in stack order
        landcover_path: Single-band categorical raster
        boundary: Study-region outline
        landcover_name: Band name for the land-cover layer

    Returns:
        EnvironmentalStack on the grid of the first climate layer
    """
    if not climate:
        raise DataError("At least one climate variable is required")

    layers = []
    for name, path, band in climate:
        layer = load_continuous_layer(path, name, boundary, band=band)
        logger.info(f"  {name}: {layer.shape[0]} x {layer.shape[1]} cells")
        layers.append(layer)

    layers.append(load_categorical_layer(landcover_path, landcover_name, boundary, layers[0]))

    stack = stack_layers(layers)
    logger.info(f"  Stack: {stack.shape}, {int(stack.valid_mask().sum())} valid cells")
    return stack
