"""Ordinary least squares price model over player attributes."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Iterable, List, Sequence

import numpy as np

from cardvalue.config.positions import regression_code
from cardvalue.models import Confidence, PlayerProfile

logger = logging.getLogger(__name__)

FEATURE_NAMES = (
    "overall",
    "age",
    "pace",
    "shooting",
    "passing",
    "dribbling",
    "defense",
    "physical",
    "goalkeeping",
    "position",
)

# The model has len(FEATURE_NAMES) + 1 unknowns, so a set of exactly this size is
# rank deficient and degrades through SingularMatrixError like any collinear set.
MIN_TRAINING_SIZE = 10
MAX_CONDITION_NUMBER = 1e12


class SingularMatrixError(ArithmeticError):
    """Raised when the normal-equation matrix cannot be inverted reliably."""


class InsufficientTrainingData(RuntimeError):
    """Raised when too few players qualify for training."""

    def __init__(self, available: int, required: int = MIN_TRAINING_SIZE):
        super().__init__(f"Need at least {required} training players, found {available}")
        self.available = available
        self.required = required


@dataclass(frozen=True)
class TrainingPoint:
    profile: PlayerProfile
    price: float
    sale_count: int = 1


@dataclass(frozen=True)
class RegressionCoefficients:
    intercept: float
    overall: float
    age: float
    pace: float
    shooting: float
    passing: float
    dribbling: float
    defense: float
    physical: float
    goalkeeping: float
    position: float

    @classmethod
    def from_vector(cls, vector: Sequence[float]) -> "RegressionCoefficients":
        values = [float(v) for v in vector]
        return cls(values[0], *values[1:])

    def as_vector(self) -> np.ndarray:
        return np.array([getattr(self, name) for name in ("intercept",) + FEATURE_NAMES], dtype=float)

    def as_dict(self) -> dict:
        return {name: round(value, 6) for name, value in asdict(self).items()}


def feature_row(profile: PlayerProfile) -> List[float]:
    return [
        1.0,
        float(profile.overall),
        float(profile.age),
        float(profile.pace),
        float(profile.shooting),
        float(profile.passing),
        float(profile.dribbling),
        float(profile.defense),
        float(profile.physical),
        float(profile.goalkeeping),
        float(regression_code(profile.primary_position)),
    ]


def design_matrix(profiles: Iterable[PlayerProfile]) -> np.ndarray:
    return np.array([feature_row(profile) for profile in profiles], dtype=float)


def solve_normal_equation(X: np.ndarray, y: np.ndarray) -> np.ndarray:
    """Solve ``(X^T X) b = X^T y``, refusing rank-deficient or ill-conditioned systems."""

    xtx = X.T @ X
    rank = np.linalg.matrix_rank(xtx)
    if rank < xtx.shape[0]:
        raise SingularMatrixError(f"X^T X is rank deficient ({rank} < {xtx.shape[0]})")
    condition = np.linalg.cond(xtx)
    if not np.isfinite(condition) or condition > MAX_CONDITION_NUMBER:
        raise SingularMatrixError(f"X^T X is ill-conditioned (cond={condition:.3g})")
    try:
        return np.linalg.solve(xtx, X.T @ y)
    except np.linalg.LinAlgError as exc:
        raise SingularMatrixError(str(exc)) from exc


def grade_prediction(r2: float, training_size: int) -> Confidence:
    if r2 > 0.7 and training_size > 50:
        return "high"
    if r2 < 0.3 or training_size < 20:
        return "low"
    return "medium"


@dataclass(frozen=True)
class RegressionModel:
    coefficients: RegressionCoefficients
    training_size: int
    r2_score: float
    mean_absolute_error: float
    trained_at_ms: int

    @property
    def confidence(self) -> Confidence:
        return grade_prediction(self.r2_score, self.training_size)

    def predict(self, profile: PlayerProfile) -> float:
        return float(np.dot(self.coefficients.as_vector(), feature_row(profile)))

    def as_dict(self) -> dict:
        return {
            "coefficients": self.coefficients.as_dict(),
            "training_size": self.training_size,
            "r2_score": round(self.r2_score, 4),
            "mean_absolute_error": round(self.mean_absolute_error, 2),
            "trained_at_ms": self.trained_at_ms,
            "confidence": self.confidence,
        }


def train_regression(
    points: Sequence[TrainingPoint],
    *,
    trained_at_ms: int,
    min_training_size: int = MIN_TRAINING_SIZE,
) -> RegressionModel:
    """Fit the model and score it on its own training set.

    Raises InsufficientTrainingData or SingularMatrixError; callers fall back
    to heuristics on either.
    """

    if len(points) < min_training_size:
        raise InsufficientTrainingData(len(points), min_training_size)

    X = design_matrix(point.profile for point in points)
    y = np.array([point.price for point in points], dtype=float)
    beta = solve_normal_equation(X, y)

    predictions = np.maximum(X @ beta, 0.0)
    residual = float(np.sum((y - predictions) ** 2))
    total = float(np.sum((y - y.mean()) ** 2))
    r2 = 1.0 - residual / total if total > 0 else 0.0
    mae = float(np.mean(np.abs(y - predictions)))

    model = RegressionModel(
        coefficients=RegressionCoefficients.from_vector(beta),
        training_size=len(points),
        r2_score=r2,
        mean_absolute_error=mae,
        trained_at_ms=trained_at_ms,
    )
    logger.info(
        "Trained regression model on %d players (r2=%.3f, mae=%.2f)",
        model.training_size,
        model.r2_score,
        model.mean_absolute_error,
    )
    return model
