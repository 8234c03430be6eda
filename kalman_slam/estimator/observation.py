"""
观测预测与数据关联阶段

步骤:
1. 对全部路标预测观测（纯定位滤波器只预测一次，序号 0）
2. 协作方挑选预测子集，只对子集计算 Jacobian 与新息协方差
3. 组装子集的新息协方差 S 并交给协作方做数据关联
4. 如果关联用到了子集之外的路标，补齐子集后重新计算（性能警告）

新息协方差块 (i, j 为子集内位置，a, b 为对应路标序号):

    S_ij = Hx_i P_vv Hx_j^T + Hx_i P_vb Hy_j^T + Hy_i P_av Hx_j^T + Hy_i P_ab Hy_j^T
    S_ii += R

只计算 j >= i 的块，下三角由对称性镜像。
"""
import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..config.options import KFOptions
from ..core.constants import NEW_LANDMARK
from ..core.data_types import ObservationBatch, PredictionCache
from ..core.exceptions import DataAssociationError, KalmanFilterError
from ..core.interfaces import IKalmanModel
from ..core.jacobians import estimate_jacobian, resolve_increments, verify_jacobian
from ..core.state import FilterState
from ..core.validators import require_shape
from ..diagnostics.profiler import StageProfiler

logger = logging.getLogger(__name__)


class ObservationStage:
    """观测预测、Jacobian、新息协方差与数据关联"""

    def __init__(self, model: IKalmanModel, options: KFOptions,
                 profiler: Optional[StageProfiler] = None):
        self.model = model
        self.options = options
        self.profiler = profiler or StageProfiler(enabled=False)

    # ------------------------------------------------------------------
    # 观测预测
    # ------------------------------------------------------------------

    def predict(self, indices: Sequence[int], state: FilterState) -> List[np.ndarray]:
        """调用观测模型并检查返回值"""
        indices = list(indices)
        O = self.model.observation_size
        predictions = self.model.observation_model(indices, state)
        if len(predictions) != len(indices):
            raise KalmanFilterError(
                f"observation_model returned {len(predictions)} predictions "
                f"for {len(indices)} landmarks"
            )
        return [require_shape(p, (O,), 'observation_model') for p in predictions]

    def predict_observations(self, state: FilterState) -> PredictionCache:
        """
        预测全部路标的观测并选出预测子集

        Returns:
            只填充了 all_predictions 与 predicted_indices 的 PredictionCache
        """
        if not state.is_slam:
            return PredictionCache(all_predictions=self.predict([0], state),
                                   predicted_indices=[0])

        num_landmarks = state.num_landmarks
        predictions = self.predict(range(num_landmarks), state)
        with self.profiler.stage('select_predictions'):
            subset = self.model.pre_compute_prediction_subset(predictions, state)
        return PredictionCache(all_predictions=predictions,
                               predicted_indices=self._check_subset(subset, num_landmarks))

    @staticmethod
    def _check_subset(subset: Sequence[int], num_landmarks: int) -> List[int]:
        """去重并检查子集序号范围，保持协作方给出的顺序"""
        checked: List[int] = []
        seen = set()
        for index in subset:
            index = int(index)
            if index < 0 or index >= num_landmarks:
                raise KalmanFilterError(
                    f"pre_compute_prediction_subset returned index {index}, "
                    f"valid range is [0, {num_landmarks})"
                )
            if index not in seen:
                seen.add(index)
                checked.append(index)
        return checked

    # ------------------------------------------------------------------
    # Jacobian
    # ------------------------------------------------------------------

    def observation_jacobians(self, state: FilterState, index: int) -> Tuple[np.ndarray, np.ndarray]:
        """
        观测 index 对车辆 (Hx, O×V) 与对路标 (Hy, O×F) 的 Jacobian

        纯定位滤波器的 Hy 形状为 (O, 0)。

        Raises:
            JacobianMismatchError: 开启交叉验证且差异超过阈值
        """
        options = self.options
        V, F, O = state.vehicle_size, state.feature_size, self.model.observation_size

        analytic = None
        if options.use_analytic_observation_jacobian or options.verify_analytic_jacobians:
            analytic = self.model.observation_jacobians(index, state)
            if analytic is not None:
                Hx, Hy = analytic
                analytic = (require_shape(Hx, (O, V), 'observation_jacobians (Hx)'),
                            require_shape(Hy, (O, F), 'observation_jacobians (Hy)')
                            if F > 0 else np.zeros((O, 0)))

        use_analytic = options.use_analytic_observation_jacobian and analytic is not None
        if use_analytic and not options.verify_analytic_jacobians:
            return analytic

        numeric = self._numeric_observation_jacobians(state, index)

        if options.verify_analytic_jacobians and analytic is not None:
            threshold = options.verify_jacobian_threshold
            verify_jacobian(numeric[0], analytic[0], threshold, 'dh_dxv')
            if F > 0:
                verify_jacobian(numeric[1], analytic[1], threshold, 'dh_dxl')

        return analytic if use_analytic else numeric

    def _numeric_observation_jacobians(self, state: FilterState,
                                       index: int) -> Tuple[np.ndarray, np.ndarray]:
        """扰动 state.x 后调用观测模型，结束时恢复 state.x"""
        V, F, O = state.vehicle_size, state.feature_size, self.model.observation_size
        increments_vehicle, increments_feature = self.model.observation_jacobian_increments()
        increments_vehicle = resolve_increments(
            self.options.observation_jacobian_increment_vehicle, increments_vehicle,
            V, 'observation_jacobian_increments (vehicle)',
        )
        subtract = self.model.subtract_observations

        def h_of(segment: slice):
            def h(values: np.ndarray) -> np.ndarray:
                state.x[segment] = values
                return self.predict([index], state)[0]
            return h

        x_saved = state.x.copy()
        try:
            vehicle = slice(0, V)
            Hx = estimate_jacobian(h_of(vehicle), x_saved[vehicle], increments_vehicle, subtract)
            state.x[:] = x_saved

            if F > 0:
                increments_feature = resolve_increments(
                    self.options.observation_jacobian_increment_feature, increments_feature,
                    F, 'observation_jacobian_increments (feature)',
                )
                feature = state.landmark_slice(index)
                Hy = estimate_jacobian(h_of(feature), x_saved[feature], increments_feature, subtract)
            else:
                Hy = np.zeros((O, 0))
        finally:
            state.x[:] = x_saved

        return Hx, Hy

    def compute_jacobians(self, state: FilterState, cache: PredictionCache, start: int = 0) -> None:
        """为 predicted_indices[start:] 计算 Jacobian 并追加到缓存"""
        for index in cache.predicted_indices[start:]:
            Hx, Hy = self.observation_jacobians(state, index)
            cache.Hx.append(Hx)
            cache.Hy.append(Hy)

    def linearize(self, state: FilterState,
                  indices: Sequence[int]) -> Tuple[List[np.ndarray], List[np.ndarray], List[np.ndarray]]:
        """在当前 state.x 处重新预测并线性化（迭代更新使用）"""
        predictions = [self.predict([index], state)[0] for index in indices]
        jacobians = [self.observation_jacobians(state, index) for index in indices]
        return predictions, [j[0] for j in jacobians], [j[1] for j in jacobians]

    # ------------------------------------------------------------------
    # 新息协方差
    # ------------------------------------------------------------------

    def build_innovation_covariance(self, state: FilterState, cache: PredictionCache,
                                    R: np.ndarray) -> np.ndarray:
        """组装预测子集的新息协方差并写入 cache.S"""
        O = self.model.observation_size
        V = state.vehicle_size
        n = cache.num_predicted
        P = state.P
        P_vv = P[:V, :V]
        S = np.zeros((n * O, n * O))

        if not state.is_slam:
            Hx = cache.Hx[0]
            S[:, :] = Hx @ P_vv @ Hx.T + R
            cache.S = S
            return S

        for i in range(n):
            a = state.landmark_slice(cache.predicted_indices[i])
            Hx_i, Hy_i = cache.Hx[i], cache.Hy[i]
            for j in range(i, n):
                b = state.landmark_slice(cache.predicted_indices[j])
                Hx_j, Hy_j = cache.Hx[j], cache.Hy[j]

                block = (Hx_i @ P_vv @ Hx_j.T
                         + Hx_i @ P[:V, b] @ Hy_j.T
                         + Hy_i @ P[a, :V] @ Hx_j.T
                         + Hy_i @ P[a, b] @ Hy_j.T)
                if i == j:
                    block = block + R

                S[i * O:(i + 1) * O, j * O:(j + 1) * O] = block
                if i != j:
                    S[j * O:(j + 1) * O, i * O:(i + 1) * O] = block.T

        cache.S = S
        return S

    # ------------------------------------------------------------------
    # 数据关联
    # ------------------------------------------------------------------

    def associate(self, state: FilterState, cache: PredictionCache,
                  R: np.ndarray) -> Tuple[ObservationBatch, int]:
        """
        计算 Jacobian 与 S，获取观测并完成数据关联

        关联结果引用了子集之外的路标时补齐子集并重做。关联序号已校验在地图范围内，
        每次重试至少加入一个新路标，子集只增不减，因此最多重试 N 次 (N 为路标数量)。

        Returns:
            (观测批次, 重试次数)

        Raises:
            DataAssociationError: 关联结果无效
        """
        profiler = self.profiler
        retries = 0
        start = 0

        while True:
            with profiler.stage('build_jacobians'):
                self.compute_jacobians(state, cache, start)
            with profiler.stage('build_innovation'):
                self.build_innovation_covariance(state, cache, R)
            with profiler.stage('associate'):
                batch = self._get_observations(state, cache, R)

            missing = self._missing_predictions(cache, batch)
            if not missing:
                return batch, retries

            retries += 1
            logger.warning(
                f"[KF] *Performance Warning*: {len(missing)} LMs were not correctly "
                f"predicted by pre_compute_prediction_subset()"
            )
            start = cache.num_predicted
            cache.predicted_indices.extend(missing)

    def _get_observations(self, state: FilterState, cache: PredictionCache,
                          R: np.ndarray) -> ObservationBatch:
        O = self.model.observation_size
        observations, association = self.model.get_observations_and_associate(
            cache.all_predictions, cache.S, list(cache.predicted_indices), R
        )
        observations = [require_shape(z, (O,), 'get_observations_and_associate')
                        for z in observations]
        association = [int(a) for a in association]

        if state.is_slam:
            if len(association) != len(observations):
                raise DataAssociationError(
                    f"Association has {len(association)} entries for "
                    f"{len(observations)} observations"
                )
            num_landmarks = state.num_landmarks
            for i, index in enumerate(association):
                if index != NEW_LANDMARK and not 0 <= index < num_landmarks:
                    raise DataAssociationError(
                        f"Observation {i} associated with landmark {index}, "
                        f"valid range is [0, {num_landmarks}) or NEW_LANDMARK"
                    )
        elif association:
            if len(association) != len(observations):
                raise DataAssociationError(
                    f"Association has {len(association)} entries for "
                    f"{len(observations)} observations"
                )
            for i, index in enumerate(association):
                if index not in (0, NEW_LANDMARK):
                    raise DataAssociationError(
                        f"Localization-only filter: observation {i} associated with {index}, "
                        f"expected 0 or NEW_LANDMARK"
                    )

        return ObservationBatch(observations=observations, association=association)

    @staticmethod
    def _missing_predictions(cache: PredictionCache, batch: ObservationBatch) -> List[int]:
        """被关联但不在预测子集中的路标（去重，保持出现顺序）"""
        predicted = set(cache.predicted_indices)
        missing: List[int] = []
        for _, index in batch.associated_pairs():
            if index not in predicted and index not in missing:
                missing.append(index)
        return missing
