"""
Presence/background logistic regression model.
"""

import logging
import warnings
from pathlib import Path
from typing import Optional

import joblib
import numpy as np
import pandas as pd
import sklearn
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import LogisticRegression
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from .config import LABEL
from .errors import BandMismatchError, DegenerateFitError
from .features import feature_columns

logger = logging.getLogger(__name__)

SKLEARN_VERSION = tuple(int(part) for part in sklearn.__version__.split(".")[:2])


def _unpenalised() -> dict:
    """Keyword arguments for a LogisticRegression without regularisation."""
    # `penalty` is deprecated from scikit-learn 1.8; an infinite C is the same fit
    if SKLEARN_VERSION >= (1, 8):
        return {"C": np.inf}
    return {"penalty": None}


class SpeciesDistributionModel:
    """
    Binary logistic regression of presence (1) vs background (0) on all bands.

    The fit is unregularised, so it is the maximum-likelihood GLM with a
    logit link. Features are standardised internally to help the solver;
    `coefficients` and `intercept` are reported on the original band scale.
    """

    def __init__(self, max_iter: int = 1000):
        self.max_iter = max_iter
        self.model = Pipeline([
            ("scaler", StandardScaler()),
            ("lr", LogisticRegression(max_iter=max_iter, **_unpenalised())),
        ])
        self.band_names: tuple[str, ...] = ()
        self.is_trained = False
        self.train_stats = {}

    def fit(self, train: pd.DataFrame, label_column: str = LABEL) -> dict:
        """
        Fit `label ~ bands` on a labelled table.

        Args:
            train: Table with a label column and one column per band
            label_column: Name of the 0/1 label column

        Returns:
            Dictionary with training statistics
        """
        if self.is_trained:
            raise RuntimeError("Model has already been trained")

        band_names = tuple(feature_columns(train))
        if not band_names:
            raise DegenerateFitError("Training table has no feature columns")

        X = train[list(band_names)].to_numpy(dtype=float)
        y = train[label_column].to_numpy(dtype=int)

        if not np.all(np.isfinite(X)):
            raise DegenerateFitError("Training features contain missing values")

        classes = np.unique(y)
        if len(classes) < 2:
            raise DegenerateFitError(f"Need both presence and background rows, found classes {classes.tolist()}")

        design = np.column_stack([np.ones(len(X)), X])
        rank = np.linalg.matrix_rank(design)
        if rank < design.shape[1]:
            raise DegenerateFitError(
                f"Feature matrix is rank deficient ({rank} < {design.shape[1]}): "
                f"bands are constant or collinear"
            )

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", ConvergenceWarning)
            self.model.fit(X, y)

        converged = True
        for w in caught:
            if issubclass(w.category, ConvergenceWarning):
                converged = False
                logger.warning(f"Logistic regression did not converge (data may be separable): {w.message}")
            else:
                warnings.warn(w.message, w.category)

        self.band_names = band_names
        self.is_trained = True
        self.train_stats = {
            "n_train": len(X),
            "n_presence": int(y.sum()),
            "n_background": int(len(y) - y.sum()),
            "converged": converged,
            "intercept": self.intercept,
            "coefficients": self.coefficients,
        }

        logger.info(f"Fitted logistic regression on {len(X)} rows, {len(band_names)} bands")

        return self.train_stats

    @property
    def coefficients(self) -> dict[str, float]:
        """Per-band coefficients on the original (unscaled) band values."""
        self._check_trained()
        scaler = self.model.named_steps["scaler"]
        lr = self.model.named_steps["lr"]
        raw = lr.coef_[0] / scaler.scale_
        return {name: float(value) for name, value in zip(self.band_names, raw)}

    @property
    def intercept(self) -> float:
        self._check_trained()
        scaler = self.model.named_steps["scaler"]
        lr = self.model.named_steps["lr"]
        return float(lr.intercept_[0] - np.sum(lr.coef_[0] * scaler.mean_ / scaler.scale_))

    def _check_trained(self) -> None:
        if not self.is_trained:
            raise RuntimeError("Model has not been trained yet")

    def _feature_matrix(self, features: pd.DataFrame | np.ndarray) -> np.ndarray:
        if isinstance(features, pd.DataFrame):
            missing = [b for b in self.band_names if b not in features.columns]
            if missing:
                raise BandMismatchError(self.band_names, tuple(feature_columns(features)))
            return features[list(self.band_names)].to_numpy(dtype=float)

        X = np.asarray(features, dtype=float)
        if X.ndim != 2 or X.shape[1] != len(self.band_names):
            raise ValueError(f"Expected feature matrix with {len(self.band_names)} columns, got shape {X.shape}")
        return X

    def predict_proba(self, features: pd.DataFrame | np.ndarray) -> np.ndarray:
        """
        Predict presence probabilities.

        Args:
            features: Table with the model's band columns, or a matrix whose
                columns are in `band_names` order

        Returns:
            Array of probabilities for the presence class
        """
        self._check_trained()
        X = self._feature_matrix(features)
        if len(X) == 0:
            return np.zeros(0)
        return self.model.predict_proba(X)[:, 1]

    def summary(self) -> dict:
        self._check_trained()
        return {
            "band_names": list(self.band_names),
            **self.train_stats,
        }

    def save(self, path: str | Path) -> None:
        """Save the trained model to disk."""
        self._check_trained()

        save_data = {
            "model": self.model,
            "band_names": self.band_names,
            "max_iter": self.max_iter,
            "train_stats": self.train_stats,
        }
        joblib.dump(save_data, path)

    @classmethod
    def load(cls, path: str | Path) -> "SpeciesDistributionModel":
        """Load a trained model from disk."""
        data = joblib.load(path)

        sdm = cls(max_iter=data["max_iter"])
        sdm.model = data["model"]
        sdm.band_names = tuple(data["band_names"])
        sdm.train_stats = data["train_stats"]
        sdm.is_trained = True

        return sdm


def fit_model(train: pd.DataFrame, max_iter: Optional[int] = None) -> SpeciesDistributionModel:
    """Fit a new model on a labelled training table."""
    sdm = SpeciesDistributionModel() if max_iter is None else SpeciesDistributionModel(max_iter=max_iter)
    sdm.fit(train)
    return sdm
