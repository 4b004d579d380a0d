"""
Tests for background sampling and feature extraction.
"""

import numpy as np
import pandas as pd
import pytest

from conftest import N_OCCURRENCES, UTM, make_stack
from islandsdm.errors import SamplingError
from islandsdm.occurrences import load_occurrences
from islandsdm.sampling import extract_features, label_points, sample_background


def _small_stack():
    a = np.arange(100, dtype=float).reshape(10, 10)
    lc = np.tile([1.0, 2.0], (10, 5))
    lc[:, :3] = np.nan
    return make_stack({"a": a, "lc": lc}, categorical=("lc",))


def test_background_is_deterministic_for_a_seed():
    stack = _small_stack()

    first = sample_background(stack, 20, seed=3)
    second = sample_background(stack, 20, seed=3)
    other = sample_background(stack, 20, seed=4)

    pd.testing.assert_frame_equal(first, second)
    assert not first.equals(other)


def test_background_only_from_valid_cells():
    stack = _small_stack()
    background = sample_background(stack, 50, seed=1)

    assert len(background) == 50
    assert list(background.columns) == ["longitude", "latitude"]

    _, valid = stack.sample_at_coords(list(zip(background["longitude"], background["latitude"])))
    assert valid.all()
    assert not background.duplicated().any()


def test_background_capped_at_valid_cell_count(caplog):
    stack = _small_stack()

    with caplog.at_level("WARNING", logger="islandsdm.sampling"):
        background = sample_background(stack, 500, seed=1)

    assert len(background) == 70
    assert "Only 70 valid cells" in caplog.text


def test_background_without_valid_cells():
    stack = make_stack({"a": np.full((3, 3), np.nan)})

    with pytest.raises(SamplingError):
        sample_background(stack, 10)


def test_label_points():
    presence = pd.DataFrame({"longitude": [1.0, 2.0], "latitude": [3.0, 4.0]})
    background = pd.DataFrame({"longitude": [5.0], "latitude": [6.0]})

    labelled = label_points(presence, background)

    assert labelled["label"].tolist() == [1, 1, 0]
    assert labelled["longitude"].tolist() == [1.0, 2.0, 5.0]


def test_extract_features_excludes_partial_rows():
    stack = _small_stack()
    lon_ok, lat_ok = stack.pixel_to_coords(4, 6)
    lon_gap, lat_gap = stack.pixel_to_coords(4, 1)
    labelled = pd.DataFrame({
        "longitude": [lon_ok, lon_gap, 100.0],
        "latitude": [lat_ok, lat_gap, 0.0],
        "label": [1, 0, 0],
    })

    features = extract_features(stack, labelled)

    assert list(features.columns) == ["label", "a", "lc"]
    assert len(features) == 1
    assert features.iloc[0].tolist() == [1, 46.0, 1]
    assert features["lc"].dtype.kind == "i"
    assert features.notna().all().all()


def test_reference_case_row_counts(stack, occurrence_path):
    occurrences = load_occurrences(occurrence_path, UTM)
    background = sample_background(stack, 200, seed=42)
    labelled = label_points(occurrences, background)
    features = extract_features(stack, labelled)

    assert len(background) == 200
    assert len(labelled) == N_OCCURRENCES + 200 == 332
    assert len(features) == 332
    assert features["label"].sum() == N_OCCURRENCES
    assert list(features.columns) == ["label", *stack.names]
