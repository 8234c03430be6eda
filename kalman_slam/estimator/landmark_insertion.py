"""
新路标插入

对关联结果为 NEW_LANDMARK 的每个观测，通过逆观测模型 y_n = g(x_v, z) 初始化路标，
并填充扩展后协方差的新行列:

    P[n, v] = dyn_dxv · P_vv
    P[n, i] = dyn_dxv · P_vi                                  (已有路标 i)
    P[n, n] = dyn_dxv · P_vv · dyn_dxv^T + dyn_dhn · R · dyn_dhn^T

协作方提供预组合噪声项时，最后一项直接使用该噪声项。
"""
import logging
from typing import List

import numpy as np

from ..core.data_types import InverseObservation, ObservationBatch
from ..core.exceptions import KalmanFilterError
from ..core.interfaces import IKalmanModel
from ..core.state import FilterState
from ..core.validators import require_shape

logger = logging.getLogger(__name__)


class LandmarkInserter:
    """把新观测扩展为状态中的路标段"""

    def __init__(self, model: IKalmanModel):
        self.model = model

    def run(self, state: FilterState, batch: ObservationBatch, R: np.ndarray) -> List[int]:
        """
        插入本次迭代的全部新路标

        Returns:
            新路标序号列表（按观测顺序）
        """
        if not state.is_slam or not batch.association:
            return []

        return [self.insert(state, obs_index, batch.observations[obs_index], R)
                for obs_index in batch.new_landmark_observations()]

    def insert(self, state: FilterState, obs_index: int, z: np.ndarray, R: np.ndarray) -> int:
        """
        插入单个路标

        Raises:
            KalmanFilterError: 逆观测结果形状不符或外部 ID 重复
        """
        V, F = state.vehicle_size, state.feature_size
        O = self.model.observation_size

        result = self.model.inverse_observation_model(z, state)
        if not isinstance(result, InverseObservation):
            raise KalmanFilterError(
                f"inverse_observation_model must return InverseObservation, got {type(result).__name__}"
            )
        mean = require_shape(result.mean, (F,), 'inverse_observation_model (mean)')
        dyn_dxv = require_shape(result.dyn_dxv, (F, V), 'inverse_observation_model (dyn_dxv)')
        if result.uses_observation_jacobian():
            if result.dyn_dhn is None:
                raise KalmanFilterError(
                    "inverse_observation_model must provide dyn_dhn or noise_term"
                )
            dyn_dhn = require_shape(result.dyn_dhn, (F, O), 'inverse_observation_model (dyn_dhn)')
            noise = dyn_dhn @ R @ dyn_dhn.T
        else:
            noise = require_shape(result.noise_term, (F, F), 'inverse_observation_model (noise_term)')

        new_index = state.num_landmarks
        external_id = self.model.on_new_landmark_inserted(obs_index, new_index)
        if external_id is None:
            external_id = new_index
        if external_id in state.landmark_ids:
            raise KalmanFilterError(f"Landmark id {external_id!r} is already in the map")

        index = state.append_landmark(mean)
        offset = state.landmark_offset(index)
        new = slice(offset, offset + F)
        P = state.P
        P_vv = P[:V, :V]

        P_nv = dyn_dxv @ P_vv
        P[new, :V] = P_nv
        P[:V, new] = P_nv.T

        if index > 0:
            P_nl = dyn_dxv @ P[:V, V:offset]
            P[new, V:offset] = P_nl
            P[V:offset, new] = P_nl.T

        P[new, new] = dyn_dxv @ P_vv @ dyn_dxv.T + noise

        state.landmark_ids.add(external_id, index)
        logger.debug(f"[KF] Inserted landmark #{index} (id={external_id!r}) from observation {obs_index}")
        return index
