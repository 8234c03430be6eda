"""
新路标插入测试

验证扩展后协方差的新行列:
    P[n, v] = dyn_dxv · P_vv
    P[n, i] = dyn_dxv · P_vi
    P[n, n] = dyn_dxv · P_vv · dyn_dxv^T + dyn_dhn · R · dyn_dhn^T
"""
import logging
import sys
import os

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from kalman_slam.core.constants import NEW_LANDMARK
from kalman_slam.core.data_types import InverseObservation, ObservationBatch
from kalman_slam.core.exceptions import KalmanFilterError
from kalman_slam.core.state import FilterState
from kalman_slam.estimator.kalman_filter import KalmanFilterEngine
from kalman_slam.estimator.landmark_insertion import LandmarkInserter
from kalman_slam.mock.linear_models import LinearSLAMModel, ScalarLocalizationModel
from kalman_slam.mock.range_bearing_slam import RangeBearingSLAMModel
from kalman_slam.tests.fixtures import make_config


P_VV = np.array([[0.5, 0.1], [0.1, 0.3]])


def _linear_state():
    state = FilterState(2, 2)
    state.set_vehicle([1.0, 2.0], P_VV)
    return state


def _load_batch(model, observations):
    """排入观测并取出本次迭代的批次"""
    model.queue_observations(observations)
    z, association = model.get_observations_and_associate([], None, [], model.observation_noise())
    return ObservationBatch(observations=z, association=association)


def test_first_landmark_covariance():
    """测试第一个路标的均值与协方差块"""
    R = np.diag([0.04, 0.09])
    model = LinearSLAMModel(observation_noise=R)
    state = _linear_state()
    batch = _load_batch(model, [('a', [3.0, 1.0])])

    inserted = LandmarkInserter(model).run(state, batch, R)

    assert inserted == [0]
    assert state.size == 4
    assert np.allclose(state.landmark(0), [4.0, 3.0])
    assert np.allclose(state.cross_covariance(0), P_VV)
    assert np.allclose(state.P[2:4, 0:2], P_VV)
    assert np.allclose(state.landmark_covariance(0), P_VV + R)
    assert np.array_equal(state.P, state.P.T)
    assert state.landmark_ids.ids() == ['a']
    assert model.id_to_index == {'a': 0}

    print("✓ test_first_landmark_covariance passed")


def test_zero_noise_insertion():
    """测试 R = 0 时 P[n, n] = dyn_dxv · P_vv · dyn_dxv^T"""
    model = LinearSLAMModel(observation_noise=np.zeros((2, 2)))
    state = _linear_state()
    batch = _load_batch(model, [('a', [3.0, 1.0])])

    LandmarkInserter(model).run(state, batch, np.zeros((2, 2)))

    assert np.allclose(state.landmark_covariance(0), P_VV)


def test_second_landmark_cross_covariance():
    """测试第二个路标与已有路标的交叉协方差"""
    R = np.diag([0.04, 0.09])
    model = LinearSLAMModel(observation_noise=R)
    state = _linear_state()
    batch = _load_batch(model, [('a', [3.0, 1.0]), ('b', [-1.0, 2.0])])

    inserted = LandmarkInserter(model).run(state, batch, R)

    assert inserted == [0, 1]
    assert state.size == 6
    assert np.allclose(state.landmark(1), [0.0, 4.0])
    # 两个路标都由同一车辆状态初始化，互协方差为 P_vv
    assert np.allclose(state.block(1, 0), P_VV)
    assert np.allclose(state.block(0, 1), P_VV)
    assert np.allclose(state.landmark_covariance(1), P_VV + R)
    assert np.array_equal(state.P, state.P.T)

    print("✓ test_second_landmark_cross_covariance passed")


def test_precombined_noise_term():
    """测试协作方提供预组合噪声项时直接使用"""
    model_R = np.diag([0.2, 0.3])
    model = LinearSLAMModel(observation_noise=model_R, inverse_noise_term=True)
    state = _linear_state()
    batch = _load_batch(model, [('a', [3.0, 1.0])])

    # 传入的 R 与噪声项不同，结果只取决于噪声项
    LandmarkInserter(model).run(state, batch, np.zeros((2, 2)))

    assert np.allclose(state.landmark_covariance(0), P_VV + model_R)


def test_range_bearing_insertion_matches_formula():
    """测试非线性逆观测的协方差填充"""
    model = RangeBearingSLAMModel()
    state = FilterState(3, 2)
    P_vv = np.array([
        [0.02, 0.001, 0.0],
        [0.001, 0.03, 0.002],
        [0.0, 0.002, 0.01],
    ])
    state.set_vehicle([1.0, -1.0, 0.4], P_vv)
    z = np.array([5.0, 0.3])
    model.set_step(np.zeros(3), [(7, z)])
    R = model.observation_noise()
    expected = model.inverse_observation_model(z, state)

    index = LandmarkInserter(model).insert(state, 0, z, R)

    assert index == 0
    assert np.allclose(state.landmark(0), expected.mean)
    assert np.allclose(state.cross_covariance(0).T, expected.dyn_dxv @ P_vv)
    assert np.allclose(
        state.landmark_covariance(0),
        expected.dyn_dxv @ P_vv @ expected.dyn_dxv.T + expected.dyn_dhn @ R @ expected.dyn_dhn.T,
    )
    assert state.landmark_ids.index_of(7) == 0


class _AnonymousLandmarkModel(LinearSLAMModel):
    """插入钩子不提供外部 ID"""

    def on_new_landmark_inserted(self, observation_index, landmark_index):
        return None


def test_hook_without_id_uses_index():
    """测试钩子返回 None 时外部 ID 为序号"""
    model = _AnonymousLandmarkModel()
    state = _linear_state()
    batch = _load_batch(model, [('a', [3.0, 1.0]), ('b', [0.0, 1.0])])

    LandmarkInserter(model).run(state, batch, model.observation_noise())

    assert state.landmark_ids.ids() == [0, 1]


class _DuplicateIdModel(LinearSLAMModel):
    def on_new_landmark_inserted(self, observation_index, landmark_index):
        return 'same'


def test_duplicate_id_rejected_before_state_changes():
    """测试外部 ID 重复时拒绝插入且状态不变"""
    model = _DuplicateIdModel()
    state = _linear_state()
    batch = _load_batch(model, [('a', [3.0, 1.0]), ('b', [0.0, 1.0])])
    inserter = LandmarkInserter(model)
    R = model.observation_noise()

    inserter.insert(state, 0, batch.observations[0], R)
    size = state.size

    with pytest.raises(KalmanFilterError):
        inserter.insert(state, 1, batch.observations[1], R)
    assert state.size == size
    assert state.num_landmarks == 1


class _BadInverseModel(LinearSLAMModel):
    def __init__(self, result):
        super().__init__()
        self.result = result

    def inverse_observation_model(self, z, state):
        return self.result


def test_invalid_inverse_observation_rejected():
    """测试逆观测结果类型或形状不符"""
    bad_results = [
        (np.zeros(2), np.eye(2), np.eye(2)),
        InverseObservation(mean=np.zeros(3), dyn_dxv=np.eye(2), dyn_dhn=np.eye(2)),
        InverseObservation(mean=np.zeros(2), dyn_dxv=np.eye(3), dyn_dhn=np.eye(2)),
        InverseObservation(mean=np.zeros(2), dyn_dxv=np.eye(2)),
    ]
    for result in bad_results:
        model = _BadInverseModel(result)
        state = _linear_state()
        with pytest.raises(KalmanFilterError):
            LandmarkInserter(model).insert(state, 0, np.zeros(2), model.observation_noise())
        assert state.num_landmarks == 0

    print("✓ test_invalid_inverse_observation_rejected passed")


def test_localization_only_never_inserts():
    """测试纯定位滤波器忽略 NEW_LANDMARK 标记"""
    model = ScalarLocalizationModel()
    state = FilterState(1, 0)
    batch = ObservationBatch(observations=[np.array([1.0])], association=[NEW_LANDMARK])

    assert LandmarkInserter(model).run(state, batch, model.observation_noise()) == []
    assert state.size == 1


def test_reobserving_inserted_landmark_keeps_estimate(caplog):
    """测试插入后再次观测到相同测量时估计不变，方差减小"""
    model = LinearSLAMModel(observation_noise=1e-6 * np.eye(2))
    engine = KalmanFilterEngine(model, make_config())
    engine.set_initial_state([1.0, 2.0], P_VV)

    model.queue_observations([('a', [3.0, 1.0])])
    with caplog.at_level(logging.INFO):
        info = engine.run_one_iteration()
    assert info.inserted_landmarks == [0]
    assert any('Inserted 1 new landmarks' in r.getMessage() for r in caplog.records)

    x_before = engine.get_state().state
    variance_before = np.trace(engine.get_vehicle_covariance())

    model.queue_observations([('a', [3.0, 1.0])])
    info = engine.run_one_iteration()

    assert info.association == [0]
    assert info.inserted_landmarks == []
    assert np.allclose(engine.get_state().state, x_before)
    assert np.trace(engine.get_vehicle_covariance()) <= variance_before + 1e-12

    print("✓ test_reobserving_inserted_landmark_keeps_estimate passed")


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
