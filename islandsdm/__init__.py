"""
Species Distribution Modelling for an island study region

Fit a logistic-regression habitat-suitability model from occurrence records,
bioclimatic rasters and a land-cover map.
"""

from .errors import SDMError, DataError, GeometryError, SamplingError, FitError
from .config import PipelineConfig
from .occurrences import load_occurrences, load_boundary
from .layers import LayerKey, LayerStore, Layer, EnvironmentalStack, FeatureSchema, build_environment
from .sampling import sample_background, label_points, extract_features
from .model import SuitabilityModel, Evaluation, assign_folds, evaluate, max_spec_sens
from .predict import SuitabilityResult, predict_surface, threshold_surface
from .pipeline import run_pipeline

__all__ = [
    'SDMError',
    'DataError',
    'GeometryError',
    'SamplingError',
    'FitError',
    'PipelineConfig',
    'load_occurrences',
    'load_boundary',
    'LayerKey',
    'LayerStore',
    'Layer',
    'EnvironmentalStack',
    'FeatureSchema',
    'build_environment',
    'sample_background',
    'label_points',
    'extract_features',
    'SuitabilityModel',
    'Evaluation',
    'assign_folds',
    'evaluate',
    'max_spec_sens',
    'SuitabilityResult',
    'predict_surface',
    'threshold_surface',
    'run_pipeline',
]
