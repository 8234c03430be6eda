"""核心模块"""
from .enums import KFMethod
from .data_types import (
    InverseObservation, ObservationBatch, PredictionCache, CycleInfo, FilterOutput,
)
from .interfaces import ILifecycleComponent, LifecycleState, IKalmanModel
from .state import FilterState, LandmarkIndex
from .jacobians import (
    estimate_jacobian, verify_jacobian, jacobian_difference, resolve_increments,
)
from .constants import (
    EPSILON, EPSILON_SMALL, SYMMETRY_TOLERANCE,
    DEFAULT_JACOBIAN_INCREMENT, DEFAULT_JACOBIAN_VERIFY_THRESHOLD,
    NEW_LANDMARK, normalize_angle, angle_difference,
)
from .exceptions import (
    KalmanFilterError, ConfigurationError, ConfigValidationError,
    UnsupportedMethodError, JacobianMismatchError, DataAssociationError,
    NumericalDegeneracyError,
)
