"""
Binomial GLM training, fold assignment and threshold evaluation.
"""

import logging
import warnings
from dataclasses import dataclass, field
from pathlib import Path

import joblib
import numpy as np
import pandas as pd
from sklearn.compose import ColumnTransformer
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import roc_auc_score
from sklearn.model_selection import StratifiedKFold
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import OneHotEncoder

from .errors import FitError
from .layers import FeatureSchema

logger = logging.getLogger(__name__)


def assign_folds(labels, n_folds: int = 5, seed: int = 42) -> np.ndarray:
    """
    Label-stratified random assignment of rows to folds 1..n_folds.

    Each fold keeps the presence/background ratio of the full table as
    closely as the counts allow.
    """
    labels = np.asarray(labels)
    folds = np.zeros(len(labels), dtype=int)
    splitter = StratifiedKFold(n_splits=n_folds, shuffle=True, random_state=seed)

    try:
        for fold, (_, test_idx) in enumerate(splitter.split(np.zeros(len(labels)), labels), start=1):
            folds[test_idx] = fold
    except ValueError as exc:
        raise FitError(f"Cannot split {len(labels)} rows into {n_folds} stratified folds: {exc}") from exc

    return folds


def split_folds(
    features: pd.DataFrame, folds: np.ndarray, test_fold: int = 1
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Return (train, test) with ``test_fold`` held out."""
    held_out = folds == test_fold
    return features[~held_out].reset_index(drop=True), features[held_out].reset_index(drop=True)


class SuitabilityModel:
    """
    Logistic regression of presence/background on environmental covariates.

    Categorical covariates expand to one indicator per level (the first
    level is the baseline). No interactions, no regularisation and no
    standardisation.
    """

    def __init__(self, schema: FeatureSchema):
        self.schema = schema
        self.model = self._build()
        self.is_trained = False
        self.train_stats = {}

    def _build(self) -> Pipeline:
        design = ColumnTransformer(
            [
                ("categorical",
                 OneHotEncoder(drop="first", handle_unknown="ignore", sparse_output=False),
                 list(self.schema.categorical)),
                ("continuous", "passthrough", list(self.schema.continuous)),
            ],
            verbose_feature_names_out=False,
        )
        glm = LogisticRegression(C=np.inf, solver="newton-cholesky", max_iter=1000)
        return Pipeline([("design", design), ("glm", glm)])

    def train(self, train: pd.DataFrame) -> dict:
        """
        Fit the GLM on a training partition.

        Raises:
            FitError: single label class, rank-deficient design matrix or
                complete separation of the classes
        """
        y = train[self.schema.label].to_numpy(dtype=int)
        X = train[list(self.schema.covariates)]

        if len(np.unique(y)) < 2:
            raise FitError("Training partition contains only one label class")

        design = self.model.named_steps["design"].fit_transform(X)
        full = np.column_stack([np.ones(len(design)), design])
        rank = np.linalg.matrix_rank(full)
        if rank < full.shape[1]:
            raise FitError(
                f"Design matrix is rank deficient ({rank} < {full.shape[1]} columns); "
                "covariates are collinear or a category level is constant"
            )

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", ConvergenceWarning)
            self.model.named_steps["glm"].fit(design, y)
        for w in caught:
            logger.warning(f"GLM fit: {w.category.__name__}: {w.message}")

        self.is_trained = True

        scores = self.predict_proba(train)
        if scores[y == 1].min() > scores[y == 0].max():
            self.is_trained = False
            raise FitError("Presence and background are perfectly separated by the covariates")

        self.train_stats = {
            "n_train": len(y),
            "n_presence_train": int(y.sum()),
            "n_background_train": int(len(y) - y.sum()),
            "coefficients": self.coefficients().to_dict(),
        }
        return self.train_stats

    def predict_proba(self, features: pd.DataFrame) -> np.ndarray:
        """
        Probability of occurrence for each row.

        Args:
            features: Table holding at least the schema's covariate columns

        Returns:
            Array of probabilities for the presence class
        """
        if not self.is_trained:
            raise RuntimeError("Model has not been trained yet")
        return self.model.predict_proba(features[list(self.schema.covariates)])[:, 1]

    def unseen_levels(self, features: pd.DataFrame) -> dict:
        """Categorical levels in ``features`` that never occurred in training, by covariate."""
        if not self.schema.categorical:
            return {}
        encoder = self.model.named_steps["design"].named_transformers_["categorical"]
        unseen = {}
        for name, known in zip(self.schema.categorical, encoder.categories_):
            levels = np.setdiff1d(features[name].unique(), known)
            if len(levels):
                unseen[name] = levels.tolist()
        return unseen

    def coefficients(self) -> pd.Series:
        """Intercept and one coefficient per design column."""
        design = self.model.named_steps["design"]
        glm = self.model.named_steps["glm"]
        names = ["(Intercept)", *design.get_feature_names_out()]
        return pd.Series(np.concatenate([glm.intercept_, glm.coef_[0]]), index=names)

    def save(self, path: str | Path) -> None:
        """Save the trained model to disk."""
        if not self.is_trained:
            raise RuntimeError("Model has not been trained yet")

        save_data = {
            "model": self.model,
            "schema": self.schema,
            "train_stats": self.train_stats,
        }
        joblib.dump(save_data, path)

    @classmethod
    def load(cls, path: str | Path) -> "SuitabilityModel":
        """Load a trained model from disk."""
        data = joblib.load(path)

        model = cls(schema=data["schema"])
        model.model = data["model"]
        model.train_stats = data["train_stats"]
        model.is_trained = True

        return model


def threshold_table(presence_scores: np.ndarray, background_scores: np.ndarray) -> pd.DataFrame:
    """
    Sensitivity and specificity at every achievable cutoff.

    Candidate cutoffs are the distinct predicted values. A score at or above
    the cutoff counts as a predicted presence.
    """
    presence_scores = np.asarray(presence_scores, dtype=float)
    background_scores = np.asarray(background_scores, dtype=float)
    cutoffs = np.unique(np.concatenate([presence_scores, background_scores]))

    sensitivity = (presence_scores[None, :] >= cutoffs[:, None]).mean(axis=1)
    specificity = (background_scores[None, :] < cutoffs[:, None]).mean(axis=1)

    return pd.DataFrame({
        "threshold": cutoffs,
        "sensitivity": sensitivity,
        "specificity": specificity,
    })


def max_spec_sens(presence_scores: np.ndarray, background_scores: np.ndarray) -> float:
    """Cutoff maximising sensitivity + specificity (lowest cutoff on ties)."""
    table = threshold_table(presence_scores, background_scores)
    best = int(np.argmax((table["sensitivity"] + table["specificity"]).to_numpy()))
    return float(table["threshold"].iloc[best])


@dataclass
class Evaluation:
    """Discrimination statistics on a held-out partition."""

    n_presence: int
    n_background: int
    auc: float
    threshold: float
    sensitivity: float
    specificity: float
    true_positive: int
    false_negative: int
    true_negative: int
    false_positive: int
    table: pd.DataFrame = field(repr=False)

    def to_dict(self) -> dict:
        return {
            "n_presence": self.n_presence,
            "n_background": self.n_background,
            "auc": self.auc,
            "threshold": self.threshold,
            "sensitivity": self.sensitivity,
            "specificity": self.specificity,
            "true_positive": self.true_positive,
            "false_negative": self.false_negative,
            "true_negative": self.true_negative,
            "false_positive": self.false_positive,
        }


def evaluate(model: SuitabilityModel, test: pd.DataFrame) -> Evaluation:
    """
    Score the test partition and pick the max_spec_sens threshold.

    Raises:
        FitError: the partition lacks presence rows or background rows
    """
    labels = test[model.schema.label].to_numpy(dtype=int)
    n_presence = int((labels == 1).sum())
    n_background = int((labels == 0).sum())
    if n_presence == 0 or n_background == 0:
        raise FitError(
            f"Test partition needs both classes (presence: {n_presence}, background: {n_background})"
        )

    scores = model.predict_proba(test)
    presence_scores = scores[labels == 1]
    background_scores = scores[labels == 0]

    threshold = max_spec_sens(presence_scores, background_scores)
    tp = int((presence_scores >= threshold).sum())
    tn = int((background_scores < threshold).sum())

    return Evaluation(
        n_presence=n_presence,
        n_background=n_background,
        auc=float(roc_auc_score(labels, scores)),
        threshold=threshold,
        sensitivity=tp / n_presence,
        specificity=tn / n_background,
        true_positive=tp,
        false_negative=n_presence - tp,
        true_negative=tn,
        false_positive=n_background - tn,
        table=threshold_table(presence_scores, background_scores),
    )


def train_and_evaluate(
    features: pd.DataFrame,
    schema: FeatureSchema,
    n_folds: int = 5,
    test_fold: int = 1,
    seed: int = 42,
) -> tuple[SuitabilityModel, Evaluation, np.ndarray]:
    """
    Split into stratified folds, fit on the training folds, evaluate on ``test_fold``.

    Returns:
        Tuple of (model, evaluation, folds)
    """
    folds = assign_folds(features[schema.label], n_folds=n_folds, seed=seed)
    train, test = split_folds(features, folds, test_fold=test_fold)
    logger.info(f"  Train: {len(train)} rows, test (fold {test_fold}): {len(test)} rows")

    model = SuitabilityModel(schema)
    model.train(train)
    evaluation = evaluate(model, test)

    logger.info(f"  AUC: {evaluation.auc:.3f}")
    logger.info(
        f"  Threshold (max spec+sens): {evaluation.threshold:.3f} "
        f"(sensitivity {evaluation.sensitivity:.2f}, specificity {evaluation.specificity:.2f})"
    )
    return model, evaluation, folds
