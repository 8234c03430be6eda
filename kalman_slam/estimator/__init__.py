"""滤波引擎模块"""
from .kalman_filter import KalmanFilterEngine
from .prediction import PredictionStage
from .observation import ObservationStage
from .update import UpdateStage, kalman_gain
from .landmark_insertion import LandmarkInserter

__all__ = [
    'KalmanFilterEngine',
    'PredictionStage',
    'ObservationStage',
    'UpdateStage',
    'kalman_gain',
    'LandmarkInserter',
]
