"""
更新阶段

支持的更新策略:

- EKF_NAIVE: 完整矩阵更新
      K = P H^T S^-1,  x += K (z ⊖ h),  P = (I - K H) P
- IKF_FULL: 迭代扩展卡尔曼滤波，在最新估计处重新线性化
      x_{i+1} = x_0 + K_i (z ⊖ h(x_i) - H_i (x_0 - x_i))
  第 0 次迭代与 EKF_NAIVE 完全相同；协方差只在最后一次迭代后更新
- EKF_DAVISON: 逐标量顺序更新，要求观测噪声 R 为对角阵，无需矩阵求逆
- IKF_SCALAR: 不支持

S 求逆使用 Cholesky 分解 (scipy.linalg.cho_factor)，S 非正定时退回伪逆。
"""
import logging
from typing import List, Tuple

import numpy as np
from scipy.linalg import LinAlgError, cho_factor, cho_solve

from ..config.options import KFOptions
from ..core.data_types import ObservationBatch, PredictionCache
from ..core.enums import KFMethod
from ..core.exceptions import (
    ConfigurationError, DataAssociationError, NumericalDegeneracyError,
    UnsupportedMethodError,
)
from ..core.interfaces import IKalmanModel
from ..core.state import FilterState
from ..core.validators import has_nonnegative_diagonal
from .observation import ObservationStage

logger = logging.getLogger(__name__)

# (观测序号, 路标序号, 预测子集内位置)
UpdateRow = Tuple[int, int, int]


def kalman_gain(P: np.ndarray, H: np.ndarray, S: np.ndarray) -> np.ndarray:
    """
    K = P H^T S^-1

    S 非正定时记录警告并使用伪逆。
    """
    PHt = P @ H.T
    try:
        factor = cho_factor(S)
        return cho_solve(factor, PHt.T).T
    except LinAlgError:
        logger.warning("[KF] Innovation covariance is not positive definite, using pseudo-inverse")
        return PHt @ np.linalg.pinv(S)


class UpdateStage:
    """按配置的策略把观测融合进状态"""

    def __init__(self, model: IKalmanModel, options: KFOptions,
                 observation_stage: ObservationStage):
        self.model = model
        self.options = options
        self.observation_stage = observation_stage

    def run(self, state: FilterState, cache: PredictionCache,
            batch: ObservationBatch, R: np.ndarray) -> int:
        """
        执行更新

        Returns:
            参与更新的观测数量（没有观测时为 0，状态不变）

        Raises:
            UnsupportedMethodError: IKF_SCALAR
            NumericalDegeneracyError: Davison 更新后出现负方差
        """
        if batch.is_empty():
            return 0

        method = self.options.method
        if method.is_full_matrix():
            return self._update_full(state, cache, batch, R)
        if method.is_scalar():
            if method == KFMethod.IKF_SCALAR:
                raise UnsupportedMethodError("Scalar iterated Kalman filter (ikf_scalar) is not implemented")
            return self._update_davison(state, cache, batch, R)
        raise ConfigurationError(f"Unknown update method: {method!r}")

    # ------------------------------------------------------------------
    # 完整矩阵更新
    # ------------------------------------------------------------------

    def _select_rows(self, state: FilterState, cache: PredictionCache,
                     batch: ObservationBatch) -> List[UpdateRow]:
        """确定参与更新的 (观测, 路标, 子集位置)"""
        if not state.is_slam:
            if batch.association:
                used = [i for i, index in enumerate(batch.association) if index >= 0]
            else:
                used = list(range(len(batch)))
            if len(used) > 1:
                raise DataAssociationError(
                    f"Localization-only full-matrix update expects a single observation, got {len(used)}"
                )
            return [(i, 0, 0) for i in used]

        rows = []
        for obs_index, landmark in batch.associated_pairs():
            position = cache.position_of(landmark)
            if position is None:
                raise DataAssociationError(
                    f"Landmark {landmark} is associated but missing from the prediction subset"
                )
            rows.append((obs_index, landmark, position))
        return rows

    def _stack(self, state: FilterState, rows: List[UpdateRow], batch: ObservationBatch,
               predictions: List[np.ndarray], Hx: List[np.ndarray],
               Hy: List[np.ndarray]) -> Tuple[np.ndarray, np.ndarray]:
        """
        堆叠稀疏观测矩阵 H 与新息向量

        predictions/Hx/Hy 与 rows 对齐。
        """
        O = self.model.observation_size
        V, F = state.vehicle_size, state.feature_size
        H = np.zeros((len(rows) * O, state.size))
        innovation = np.zeros(len(rows) * O)

        for r, (obs_index, landmark, _) in enumerate(rows):
            block = slice(r * O, (r + 1) * O)
            H[block, :V] = Hx[r]
            if F > 0:
                H[block, state.landmark_slice(landmark)] = Hy[r]
            innovation[block] = self.model.subtract_observations(
                batch.observations[obs_index], predictions[r]
            )
        return H, innovation

    def _update_full(self, state: FilterState, cache: PredictionCache,
                     batch: ObservationBatch, R: np.ndarray) -> int:
        rows = self._select_rows(state, cache, batch)
        if not rows:
            return 0

        O = self.model.observation_size
        positions = [position for _, _, position in rows]

        H, innovation = self._stack(
            state, rows, batch,
            [cache.all_predictions[landmark] for _, landmark, _ in rows],
            [cache.Hx[p] for p in positions],
            [cache.Hy[p] for p in positions],
        )
        S_index = np.concatenate([np.arange(p * O, (p + 1) * O) for p in positions])
        S = cache.S[np.ix_(S_index, S_index)]

        x0 = state.x.copy()
        P0 = state.P
        K = kalman_gain(P0, H, S)
        state.x = x0 + K @ innovation

        iterations = self.options.num_update_iterations
        if iterations > 1:
            R_stack = np.kron(np.eye(len(rows)), R)
            landmarks = [landmark for _, landmark, _ in rows]
            for _ in range(1, iterations):
                predictions, Hx, Hy = self.observation_stage.linearize(state, landmarks)
                H, innovation = self._stack(state, rows, batch, predictions, Hx, Hy)
                S = H @ P0 @ H.T + R_stack
                K = kalman_gain(P0, H, S)
                state.x = x0 + K @ (innovation - H @ (x0 - state.x))

        state.P = P0 - K @ (H @ P0)
        return len(rows)

    # ------------------------------------------------------------------
    # Davison 逐标量更新
    # ------------------------------------------------------------------

    def _update_davison(self, state: FilterState, cache: PredictionCache,
                        batch: ObservationBatch, R: np.ndarray) -> int:
        """
        逐观测、逐分量的标量更新

        每个观测的预测在当前估计处重新计算，Jacobian 复用缓存；
        同一观测内前面分量的修正通过 Jacobian 线性传递到后面分量的新息。
        """
        O = self.model.observation_size
        V = state.vehicle_size
        used = 0

        for obs_index, z in enumerate(batch.observations):
            if batch.association:
                landmark = batch.association[obs_index]
                if landmark < 0:
                    continue
            else:
                landmark = 0

            position = cache.position_of(landmark)
            if position is None:
                raise DataAssociationError(
                    f"Landmark {landmark} is associated but missing from the prediction subset"
                )

            prediction = self.observation_stage.predict([landmark], state)[0]
            innovation = np.array(self.model.subtract_observations(z, prediction), dtype=float)
            Hx, Hy = cache.Hx[position], cache.Hy[position]
            feature = state.landmark_slice(landmark) if state.is_slam else slice(V, V)

            for j in range(O):
                hx, hy = Hx[j], Hy[j]
                P = state.P

                s = (hx @ P[:V, :V] @ hx
                     + 2.0 * (hy @ P[feature, :V] @ hx)
                     + hy @ P[feature, feature] @ hy
                     + R[j, j])
                if s <= 0.0:
                    self._report_degeneracy(state, f"non-positive innovation variance {s:.6g}", None)

                k = (P[:, :V] @ hx + P[:, feature] @ hy) / s
                dx = k * innovation[j]
                state.x = state.x + dx
                # 余下分量的新息跟随本次修正
                innovation[j + 1:] -= Hx[j + 1:] @ dx[:V] + Hy[j + 1:] @ dx[feature]
                state.P = P - s * np.outer(k, k)

                if not has_nonnegative_diagonal(state.P):
                    self._report_degeneracy(state, "negative variance after scalar update", k)

            used += 1

        return used

    @staticmethod
    def _report_degeneracy(state: FilterState, reason: str, gain) -> None:
        logger.error(
            f"[KF] Davison update failed: {reason}\n"
            f" P diagonal:\n{np.diag(state.P)}\n gain:\n{gain}"
        )
        raise NumericalDegeneracyError(f"Davison scalar update: {reason}")
