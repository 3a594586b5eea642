"""Regression fallback for cards without comparable sales."""

from .model import (
    InsufficientTrainingData,
    RegressionCoefficients,
    RegressionModel,
    SingularMatrixError,
    TrainingPoint,
    train_regression,
)
from .predictor import PredictionResult, RegressionPredictor, build_training_points, position_heuristic

__all__ = [
    "InsufficientTrainingData",
    "PredictionResult",
    "RegressionCoefficients",
    "RegressionModel",
    "RegressionPredictor",
    "SingularMatrixError",
    "TrainingPoint",
    "build_training_points",
    "position_heuristic",
    "train_regression",
]
