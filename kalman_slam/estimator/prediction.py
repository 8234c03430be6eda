"""
预测阶段

车辆段按转移模型推进，协方差只更新与车辆相关的块:

    P_vv' = Q + Fv · P_vv · Fv^T
    P_vi' = Fv · P_vi            (P_iv' = P_vi'^T)

路标之间的块 P_ij 不受车辆运动影响，保持不变。
"""
import logging
from typing import Optional

import numpy as np

from ..config.options import KFOptions
from ..core.interfaces import IKalmanModel
from ..core.jacobians import estimate_jacobian, resolve_increments, verify_jacobian
from ..core.state import FilterState
from ..core.validators import require_shape

logger = logging.getLogger(__name__)


class PredictionStage:
    """
    车辆运动预测

    线程安全性:
    - 不是线程安全的，由引擎在单次迭代内串行调用
    """

    def __init__(self, model: IKalmanModel, options: KFOptions):
        self.model = model
        self.options = options

    def run(self, state: FilterState) -> bool:
        """
        执行预测

        Returns:
            False 表示转移模型请求跳过本次预测（状态和协方差均未修改）
        """
        model = self.model
        V = state.vehicle_size

        u = require_shape(model.get_control_input(), (model.action_size,), 'get_control_input')
        xv = state.vehicle.copy()

        xv_new, skip_prediction = model.transition_model(u, xv.copy())
        if skip_prediction:
            return False
        xv_new = require_shape(xv_new, (V,), 'transition_model')

        Fv = self.transition_jacobian(u, xv)
        Q = require_shape(model.transition_noise(u, xv.copy()), (V, V), 'transition_noise')

        P = state.P
        P[:V, :V] = Q + Fv @ P[:V, :V] @ Fv.T

        if state.num_landmarks > 0:
            cross = Fv @ P[:V, V:]
            P[:V, V:] = cross
            P[V:, :V] = cross.T

        state.x[:V] = xv_new
        model.normalize_state(state)
        return True

    def transition_jacobian(self, u: np.ndarray, xv: np.ndarray) -> np.ndarray:
        """
        转移 Jacobian Fv (V×V)

        优先使用协作方的解析 Jacobian；未提供或配置禁用时使用中心差分。
        开启交叉验证时两者都计算并比较。

        Raises:
            JacobianMismatchError: 解析与数值 Jacobian 差异超过阈值
        """
        options = self.options
        V = xv.shape[0]

        analytic: Optional[np.ndarray] = None
        if options.use_analytic_transition_jacobian or options.verify_analytic_jacobians:
            analytic = self.model.transition_jacobian(u, xv.copy())
            if analytic is not None:
                analytic = require_shape(analytic, (V, V), 'transition_jacobian')

        use_analytic = options.use_analytic_transition_jacobian and analytic is not None
        if use_analytic and not options.verify_analytic_jacobians:
            return analytic

        increments = resolve_increments(
            options.transition_jacobian_increment,
            self.model.transition_jacobian_increments(),
            V, 'transition_jacobian_increments',
        )
        numeric = estimate_jacobian(
            lambda x: self.model.transition_model(u, x)[0], xv, increments
        )

        if options.verify_analytic_jacobians and analytic is not None:
            verify_jacobian(numeric, analytic, options.verify_jacobian_threshold, 'dfv_dxv')

        return analytic if use_analytic else numeric
