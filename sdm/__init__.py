"""
Species Distribution Modelling with Presence/Background Logistic Regression

This package builds a simple species distribution model from occurrence
records and bioclimatic raster layers: background sampling, feature
assembly, stratified folds, logistic regression, threshold selection and
suitability mapping.
"""

from .climate import Extent, RasterStack, load_raster_stack, fetch_worldclim_bioclim, fetch_cmip6_bioclim
from .config import SDMConfig
from .errors import (
    SDMError,
    BandMismatchError,
    DegenerateFitError,
    GridMismatchError,
    InsufficientBackgroundError,
    MissingFeatureValuesError,
    NoOccurrencesError,
)
from .occurrences import read_occurrences, filter_missing_coordinates, download_occurrences
from .sampling import sample_background
from .features import assemble_features
from .folds import assign_folds, split_by_fold
from .model import SpeciesDistributionModel, fit_model
from .evaluation import Evaluation, evaluate
from .predict import SuitabilitySurface, predict_surface, classify_surface
from .pipeline import SDMResult, ForecastResult, run_sdm

__all__ = [
    'Extent',
    'RasterStack',
    'load_raster_stack',
    'fetch_worldclim_bioclim',
    'fetch_cmip6_bioclim',
    'SDMConfig',
    'SDMError',
    'BandMismatchError',
    'DegenerateFitError',
    'GridMismatchError',
    'InsufficientBackgroundError',
    'MissingFeatureValuesError',
    'NoOccurrencesError',
    'read_occurrences',
    'filter_missing_coordinates',
    'download_occurrences',
    'sample_background',
    'assemble_features',
    'assign_folds',
    'split_by_fold',
    'SpeciesDistributionModel',
    'fit_model',
    'Evaluation',
    'evaluate',
    'SuitabilitySurface',
    'predict_surface',
    'classify_surface',
    'SDMResult',
    'ForecastResult',
    'run_sdm',
]
