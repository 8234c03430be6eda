"""
卡尔曼滤波 SLAM 引擎

引擎持有联合状态 (x, P)，协作方 (IKalmanModel) 提供模型与数据关联。
宿主每获得一帧传感器数据调用一次 run_one_iteration():

    1. 预测        车辆运动，P_vv 与 P_vi 块
    2. 观测预测    全部路标的预测观测与预测子集
    3. 数据关联    Jacobian、新息协方差 S、协作方关联（必要时重试）
    4. 更新        EKF / IKF / Davison
    5. 归一化      协作方 normalize_state()
    6. 建图        插入新路标
    7. 收尾        协作方 on_post_iteration()

使用示例:
    engine = KalmanFilterEngine(model, config)
    engine.set_initial_state([0.0, 0.0, 0.0], np.diag([0.01, 0.01, 0.001]))
    for _ in range(steps):
        engine.run_one_iteration()
    output = engine.get_state()
"""
import logging
from typing import Any, Dict, Hashable, Optional

import numpy as np

from ..config.default_config import validate_config
from ..config.options import KFOptions
from ..core.data_types import CycleInfo, FilterOutput
from ..core.enums import KFMethod
from ..core.exceptions import ConfigurationError, KalmanFilterError, UnsupportedMethodError
from ..core.interfaces import IKalmanModel, ILifecycleComponent, LifecycleState
from ..core.logging_config import ThrottledLogger
from ..core.state import FilterState
from ..core.validators import is_diagonal, require_shape, symmetry_error
from ..diagnostics.profiler import StageProfiler
from .landmark_insertion import LandmarkInserter
from .observation import ObservationStage
from .prediction import PredictionStage
from .update import UpdateStage

logger = logging.getLogger(__name__)


class KalmanFilterEngine(ILifecycleComponent):
    """
    通用 EKF/IKF 引擎

    线程安全性:
    - 不是线程安全的，run_one_iteration() 与各访问方法应在同一线程中调用
    - 协作方钩子在 run_one_iteration() 内同步调用

    Args:
        model: 协作方，实现 IKalmanModel
        config: 配置字典（完整配置或仅 kf 节），None 使用默认值

    Raises:
        ConfigurationError: 配置无效，或 Davison 更新时 R 不是对角阵
        ConfigValidationError: 配置检查存在 FATAL/ERROR 级别问题
        UnsupportedMethodError: IKF_SCALAR
    """

    def __init__(self, model: IKalmanModel, config: Optional[Dict[str, Any]] = None):
        self.model = model
        self.options = KFOptions.from_config(config)

        V, F = int(model.vehicle_size), int(model.feature_size)
        O, A = int(model.observation_size), int(model.action_size)
        if O <= 0:
            raise ConfigurationError(f"observation_size must be positive, got {O}")
        if A < 0:
            raise ConfigurationError(f"action_size must be >= 0, got {A}")
        self.state = FilterState(V, F)

        self.profiler = StageProfiler(enabled=self.options.enable_profiler)
        self._prediction = PredictionStage(model, self.options)
        self._observation = ObservationStage(model, self.options, self.profiler)
        self._update = UpdateStage(model, self.options, self._observation)
        self._inserter = LandmarkInserter(model)

        self._asymmetry_logger = ThrottledLogger(logger, self.options.asymmetry_warning_interval)
        self._checked_noise: Optional[np.ndarray] = None

        self._cycle = 0
        self._last_cycle: Optional[CycleInfo] = None
        self._lifecycle = LifecycleState.UNINITIALIZED
        self._last_error: Optional[str] = None

        self._check_method()
        if config:
            # 仅 kf 节的字典按完整配置的 kf 节检查
            is_full = 'kf' in config or 'diagnostics' in config
            validate_config(config if is_full else {'kf': config})

    # ------------------------------------------------------------------
    # 构造检查
    # ------------------------------------------------------------------

    def _check_method(self) -> None:
        method = self.options.method
        if method == KFMethod.IKF_SCALAR:
            raise UnsupportedMethodError(
                "Scalar iterated Kalman filter (ikf_scalar) is not implemented, "
                "use ekf_naive, ikf_full or ekf_davison"
            )
        if method == KFMethod.EKF_DAVISON:
            self._check_scalar_noise(self._observation_noise())

    def _observation_noise(self) -> np.ndarray:
        O = self.model.observation_size
        return require_shape(self.model.observation_noise(), (O, O), 'observation_noise')

    def _check_scalar_noise(self, R: np.ndarray) -> None:
        """Davison 更新要求 R 为对角阵；R 未变化时跳过检查"""
        if self._checked_noise is not None and np.array_equal(R, self._checked_noise):
            return
        if not is_diagonal(R):
            raise ConfigurationError(
                f"ekf_davison requires a diagonal observation noise matrix R, got:\n{R}"
            )
        self._checked_noise = R.copy()

    # ------------------------------------------------------------------
    # 迭代
    # ------------------------------------------------------------------

    def run_one_iteration(self) -> CycleInfo:
        """
        执行一次完整的预测-更新-建图迭代

        任何异常都会使引擎进入 ERROR 状态并向上传播；此时状态未定义，应调用 reset()。

        Returns:
            本次迭代摘要
        """
        try:
            info = self._run_cycle()
        except Exception as e:
            self._lifecycle = LifecycleState.ERROR
            self._last_error = f"{type(e).__name__}: {e}"
            raise

        self._cycle = info.cycle
        self._last_cycle = info
        self._lifecycle = LifecycleState.RUNNING
        self._last_error = None
        return info

    def _run_cycle(self) -> CycleInfo:
        state = self.state
        model = self.model
        profiler = self.profiler
        info = CycleInfo(cycle=self._cycle + 1)

        profiler.begin_cycle()
        profiler.enter('complete_step')
        state.check_layout()

        with profiler.stage('predict'):
            applied = self._prediction.run(state)
        info.prediction_skipped = not applied
        self._check_covariance('predict')

        R = self._observation_noise()
        if self.options.method == KFMethod.EKF_DAVISON:
            self._check_scalar_noise(R)

        with profiler.stage('predict_observations'):
            cache = self._observation.predict_observations(state)
        with profiler.stage('data_association'):
            batch, retries = self._observation.associate(state, cache, R)

        info.predicted_indices = list(cache.predicted_indices)
        info.association = list(batch.association)
        info.num_observations = len(batch)
        info.association_retries = retries

        with profiler.stage('update'):
            updated = self._update.run(state, cache, batch, R)
        if updated:
            self._check_covariance('update')

        with profiler.stage('normalize'):
            model.normalize_state(state)

        with profiler.stage('insert_landmarks'):
            info.inserted_landmarks = self._inserter.run(state, batch, R)
        if info.inserted_landmarks:
            self._check_covariance('insert_landmarks')
            logger.info(
                f"[KF] Inserted {len(info.inserted_landmarks)} new landmarks, "
                f"map size {state.num_landmarks}"
            )
        state.check_layout()

        with profiler.stage('post_iteration'):
            model.on_post_iteration(state)

        profiler.leave('complete_step')
        info.timings = profiler.get_last_timings()

        if self.options.log_cycle_summary and logger.isEnabledFor(logging.DEBUG):
            logger.debug(self._format_summary(info))
        return info

    def _check_covariance(self, stage: str) -> None:
        """强制 P 对称；误差超过容差时节流警告，方差过大时节流警告"""
        state = self.state
        tolerance = state.symmetry_tolerance()
        error = state.enforce_symmetry()
        if error > tolerance:
            self._asymmetry_logger.warning(
                f"[KF] Covariance asymmetry {error:.3g} after {stage} (tolerance {tolerance:.3g}), "
                f"symmetrized",
                key=f"asym_{stage}",
            )
        if state.P.size and np.max(np.diag(state.P)) > self.options.covariance_explosion_thresh:
            self._asymmetry_logger.warning(
                f"[KF] Covariance diagonal exceeds {self.options.covariance_explosion_thresh:.3g} "
                f"after {stage}",
                key=f"explosion_{stage}",
            )

    def _format_summary(self, info: CycleInfo) -> str:
        t = info.timings

        def ms(name: str) -> float:
            return 1000.0 * t.get(name, 0.0)

        return (
            f"[KF] #{info.cycle} {self.state.num_landmarks} LMs | "
            f"Pr: {ms('predict'):.2f}ms | "
            f"Pr.Obs: {ms('predict_observations'):.2f}ms | "
            f"Obs.DA: {ms('data_association'):.2f}ms | "
            f"Upd: {ms('update'):.2f}ms | "
            f"Ins: {ms('insert_landmarks'):.2f}ms | "
            f"Total: {ms('complete_step'):.2f}ms | "
            f"obs={info.num_observations} new={len(info.inserted_landmarks)} "
            f"retries={info.association_retries}"
        )

    # ------------------------------------------------------------------
    # 状态访问
    # ------------------------------------------------------------------

    @property
    def num_landmarks(self) -> int:
        return self.state.num_landmarks

    def is_map_empty(self) -> bool:
        return self.state.is_map_empty()

    @property
    def cycle_count(self) -> int:
        return self._cycle

    @property
    def last_cycle(self) -> Optional[CycleInfo]:
        return self._last_cycle

    @property
    def lifecycle_state(self) -> LifecycleState:
        return self._lifecycle

    def get_vehicle_mean(self) -> np.ndarray:
        return self.state.vehicle.copy()

    def get_vehicle_covariance(self) -> np.ndarray:
        return self.state.P_vv.copy()

    def get_landmark_mean(self, index: int) -> np.ndarray:
        return self.state.landmark(index).copy()

    def get_landmark_covariance(self, index: int) -> np.ndarray:
        return self.state.landmark_covariance(index).copy()

    def get_landmark_index(self, external_id: Hashable) -> Optional[int]:
        """外部 ID 对应的路标序号，未知 ID 返回 None"""
        return self.state.landmark_ids.index_of(external_id)

    def get_landmark_id(self, index: int) -> Optional[Hashable]:
        """路标序号对应的外部 ID，越界返回 None"""
        return self.state.landmark_ids.id_of(index)

    def set_initial_state(self, vehicle_mean, vehicle_covariance=None) -> None:
        """
        设置车辆初始均值与协方差

        只能在地图为空时调用。

        Raises:
            KalmanFilterError: 地图非空或形状不符
        """
        if not self.state.is_map_empty():
            raise KalmanFilterError("set_initial_state() requires an empty map, call reset() first")
        self.state.set_vehicle(vehicle_mean, vehicle_covariance)

    def get_state(self) -> FilterOutput:
        """当前状态的深拷贝快照"""
        state = self.state
        return FilterOutput(
            state=state.x.copy(),
            covariance=state.P.copy(),
            vehicle_state=state.vehicle.copy(),
            vehicle_covariance=state.P_vv.copy(),
            num_landmarks=state.num_landmarks,
            landmark_ids=state.landmark_ids.ids(),
            cycle=self._cycle,
            extras={'method': self.options.method.name.lower(), 'last_cycle': self._last_cycle},
        )

    def get_profiler_stats(self) -> Dict[str, Dict[str, float]]:
        return self.profiler.get_stats()

    # ------------------------------------------------------------------
    # 生命周期
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """清空地图与车辆状态，回到初始状态"""
        self.state.reset()
        self.profiler.clear()
        self._asymmetry_logger.reset()
        self._cycle = 0
        self._last_cycle = None
        self._lifecycle = LifecycleState.UNINITIALIZED
        self._last_error = None
        logger.info("[KF] Filter reset")

    def get_health_status(self) -> Dict[str, Any]:
        healthy = self._lifecycle != LifecycleState.ERROR
        details = {
            'cycle': self._cycle,
            'num_landmarks': self.state.num_landmarks,
            'state_size': self.state.size,
            'method': self.options.method.name.lower(),
            'symmetry_error': symmetry_error(self.state.P),
            'min_diagonal': float(np.min(np.diag(self.state.P))) if self.state.P.size else 0.0,
        }
        if self._last_error:
            details['last_error'] = self._last_error
        return {
            'healthy': healthy,
            'state': self._lifecycle.name,
            'message': self._last_error or 'OK',
            'details': details,
        }
