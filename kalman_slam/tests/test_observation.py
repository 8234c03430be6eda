"""
观测预测、新息协方差与数据关联测试
"""
import logging
import sys
import os

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from kalman_slam.config.options import KFOptions
from kalman_slam.core.constants import NEW_LANDMARK
from kalman_slam.core.exceptions import DataAssociationError, JacobianMismatchError, KalmanFilterError
from kalman_slam.core.state import FilterState
from kalman_slam.estimator.observation import ObservationStage
from kalman_slam.mock.linear_models import ScalarLocalizationModel, LinearSLAMModel
from kalman_slam.mock.range_bearing_slam import RangeBearingSLAMModel
from kalman_slam.tests.fixtures import make_linear_state, random_spd


def _dense_innovation(state, stage, indices, R):
    """用完整稀疏 H 计算的参考 S"""
    O = R.shape[0]
    H = np.zeros((len(indices) * O, state.size))
    for r, index in enumerate(indices):
        Hx, Hy = stage.observation_jacobians(state, index)
        H[r * O:(r + 1) * O, :state.vehicle_size] = Hx
        H[r * O:(r + 1) * O, state.landmark_slice(index)] = Hy
    return H @ state.P @ H.T + np.kron(np.eye(len(indices)), R)


def test_predictions_for_all_landmarks():
    """测试预测全部路标，默认子集为全部"""
    model = LinearSLAMModel()
    state = make_linear_state(num_landmarks=3)
    cache = ObservationStage(model, KFOptions()).predict_observations(state)

    assert len(cache.all_predictions) == 3
    assert cache.predicted_indices == [0, 1, 2]
    for i, z in enumerate(cache.all_predictions):
        assert np.allclose(z, state.landmark(i) - state.vehicle)

    print("✓ test_predictions_for_all_landmarks passed")


def test_localization_only_prediction():
    """测试纯定位滤波器只预测序号 0"""
    model = ScalarLocalizationModel()
    state = FilterState(1, 0)
    state.set_vehicle([2.0], [[1.0]])
    cache = ObservationStage(model, KFOptions()).predict_observations(state)

    assert cache.predicted_indices == [0]
    assert np.allclose(cache.all_predictions[0], [2.0])


def test_subset_is_validated_and_deduplicated():
    """测试子集去重并检查范围"""
    model = LinearSLAMModel(subset=lambda preds, state: [2, 0, 2])
    state = make_linear_state(num_landmarks=3)
    cache = ObservationStage(model, KFOptions()).predict_observations(state)
    assert cache.predicted_indices == [2, 0]

    model = LinearSLAMModel(subset=lambda preds, state: [3])
    with pytest.raises(KalmanFilterError):
        ObservationStage(model, KFOptions()).predict_observations(state)


def test_innovation_covariance_matches_dense_product():
    """测试分块组装的 S 等于 H P H^T + R"""
    R = np.array([[0.04, 0.0], [0.0, 0.09]])
    model = LinearSLAMModel(observation_noise=R, subset=lambda preds, state: [2, 0, 1])
    state = make_linear_state(num_landmarks=3, seed=5)
    stage = ObservationStage(model, KFOptions())

    cache = stage.predict_observations(state)
    stage.compute_jacobians(state, cache)
    S = stage.build_innovation_covariance(state, cache, R)

    assert S.shape == (6, 6)
    assert np.allclose(S, _dense_innovation(state, stage, [2, 0, 1], R))
    assert np.allclose(S, S.T)
    assert cache.S is S

    print("✓ test_innovation_covariance_matches_dense_product passed")


def test_innovation_covariance_range_bearing():
    """测试非线性模型的 S 组装"""
    model = RangeBearingSLAMModel()
    state = FilterState(3, 2)
    state.set_vehicle([0.5, -0.5, 0.2])
    for lm in ([3.0, 1.0], [-1.0, 4.0], [2.0, -3.0]):
        state.append_landmark(lm)
    state.P = random_spd(state.size, seed=11, scale=0.01)
    stage = ObservationStage(model, KFOptions())
    R = model.observation_noise()

    cache = stage.predict_observations(state)
    stage.compute_jacobians(state, cache)
    S = stage.build_innovation_covariance(state, cache, R)

    assert np.allclose(S, _dense_innovation(state, stage, cache.predicted_indices, R))


def test_localization_only_innovation_covariance():
    """测试 F = 0 时 S = Hx P Hx^T + R"""
    model = ScalarLocalizationModel(observation_noise=0.25)
    state = FilterState(1, 0)
    state.set_vehicle([0.0], [[1.0]])
    stage = ObservationStage(model, KFOptions())

    cache = stage.predict_observations(state)
    stage.compute_jacobians(state, cache)
    S = stage.build_innovation_covariance(state, cache, model.observation_noise())

    assert S.shape == (1, 1)
    assert S[0, 0] == pytest.approx(1.25)


def test_numeric_observation_jacobians_restore_state():
    """测试数值观测 Jacobian 与解析一致，且恢复 state.x"""
    state = FilterState(3, 2)
    state.set_vehicle([0.5, -0.5, 0.2])
    state.append_landmark([3.0, 1.0])
    x_before = state.x.copy()

    analytic = ObservationStage(RangeBearingSLAMModel(), KFOptions()).observation_jacobians(state, 0)
    numeric = ObservationStage(RangeBearingSLAMModel(analytic_jacobians=False),
                               KFOptions()).observation_jacobians(state, 0)

    assert np.allclose(analytic[0], numeric[0], atol=1e-6)
    assert np.allclose(analytic[1], numeric[1], atol=1e-6)
    assert np.array_equal(state.x, x_before)

    print("✓ test_numeric_observation_jacobians_restore_state passed")


class _FailingObservationModel(LinearSLAMModel):
    """第二次调用观测模型时抛出异常"""

    def __init__(self):
        super().__init__(analytic_jacobians=False)
        self.calls = 0

    def observation_model(self, indices, state):
        self.calls += 1
        if self.calls > 1:
            raise RuntimeError("sensor model failure")
        return super().observation_model(indices, state)


def test_perturbed_state_restored_on_collaborator_error():
    """测试协作方抛出异常时扰动的状态被恢复"""
    state = make_linear_state(num_landmarks=1)
    x_before = state.x.copy()
    stage = ObservationStage(_FailingObservationModel(), KFOptions())

    with pytest.raises(RuntimeError):
        stage.observation_jacobians(state, 0)
    assert np.array_equal(state.x, x_before)


class _WrongObservationJacobian(RangeBearingSLAMModel):
    def observation_jacobians(self, index, state):
        Hx, Hy = super().observation_jacobians(index, state)
        return Hx, -Hy


def test_observation_jacobian_verification():
    """测试交叉验证发现错误的观测 Jacobian"""
    state = FilterState(3, 2)
    state.set_vehicle([0.0, 0.0, 0.0])
    state.append_landmark([3.0, 1.0])
    options = KFOptions(verify_analytic_jacobians=True)

    with pytest.raises(JacobianMismatchError) as exc_info:
        ObservationStage(_WrongObservationJacobian(), options).observation_jacobians(state, 0)
    assert exc_info.value.name == 'dh_dxl'

    ObservationStage(RangeBearingSLAMModel(), options).observation_jacobians(state, 0)


def test_association_retry_extends_subset(caplog):
    """测试子集启发式遗漏被关联路标时补齐并重试"""
    model = LinearSLAMModel(subset=lambda preds, state: [0])
    state = make_linear_state(num_landmarks=3)
    model.id_to_index = {'a': 0, 'b': 1, 'c': 2}
    model.queue_observations([('a', [1.0, 1.0]), ('c', [2.0, 2.0])])
    stage = ObservationStage(model, KFOptions())
    R = model.observation_noise()

    cache = stage.predict_observations(state)
    with caplog.at_level(logging.WARNING):
        batch, retries = stage.associate(state, cache, R)

    assert retries == 1
    assert cache.predicted_indices == [0, 2]
    assert len(cache.Hx) == 2 and len(cache.Hy) == 2
    assert cache.S.shape == (4, 4)
    assert batch.association == [0, 2]
    assert any('*Performance Warning*' in r.getMessage() for r in caplog.records)

    print("✓ test_association_retry_extends_subset passed")


class _OneMissingPerCallModel(LinearSLAMModel):
    """每次关联比预测子集多引用一个尚未预测的路标"""

    def get_observations_and_associate(self, predictions, S, predicted_indices, R):
        association = list(predicted_indices)
        unpredicted = [i for i in range(len(predictions)) if i not in predicted_indices]
        association.extend(unpredicted[:1])
        return [np.zeros(2) for _ in association], association


def test_association_retries_bounded_by_map_size(caplog):
    """测试最坏情况下每次重试只补齐一个路标，重试 N 次后收敛"""
    model = _OneMissingPerCallModel(subset=lambda preds, state: [])
    state = make_linear_state(num_landmarks=4)
    stage = ObservationStage(model, KFOptions())

    cache = stage.predict_observations(state)
    with caplog.at_level(logging.WARNING):
        batch, retries = stage.associate(state, cache, model.observation_noise())

    assert retries == state.num_landmarks
    assert sorted(cache.predicted_indices) == [0, 1, 2, 3]
    assert batch.association == cache.predicted_indices
    assert cache.S.shape == (8, 8)
    warnings = [r for r in caplog.records if '*Performance Warning*' in r.getMessage()]
    assert len(warnings) == 4


def test_association_without_retry():
    """测试子集覆盖关联结果时不重试"""
    model = LinearSLAMModel()
    state = make_linear_state(num_landmarks=2)
    model.id_to_index = {'a': 0}
    model.queue_observations([('a', [1.0, 1.0]), ('new', [0.5, 0.5])])
    stage = ObservationStage(model, KFOptions())

    cache = stage.predict_observations(state)
    batch, retries = stage.associate(state, cache, model.observation_noise())

    assert retries == 0
    assert batch.association == [0, NEW_LANDMARK]
    assert batch.associated_pairs() == [(0, 0)]
    assert batch.new_landmark_observations() == [1]


class _BadAssociationModel(LinearSLAMModel):
    def __init__(self, association):
        super().__init__()
        self.fixed_association = association

    def get_observations_and_associate(self, predictions, S, predicted_indices, R):
        return [np.zeros(2), np.zeros(2)], list(self.fixed_association)


def test_invalid_association_raises():
    """测试关联长度不符或引用不存在的路标"""
    state = make_linear_state(num_landmarks=2)

    for association in ([0], [0, 5], [0, -3]):
        stage = ObservationStage(_BadAssociationModel(association), KFOptions())
        cache = stage.predict_observations(state)
        with pytest.raises(DataAssociationError):
            stage.associate(state, cache, 0.01 * np.eye(2))

    print("✓ test_invalid_association_raises passed")


def test_localization_only_empty_association_allowed():
    """测试纯定位滤波器允许空关联"""
    model = ScalarLocalizationModel()
    model.queue_observations([1.0])
    state = FilterState(1, 0)
    state.set_vehicle([0.0], [[1.0]])
    stage = ObservationStage(model, KFOptions())

    cache = stage.predict_observations(state)
    batch, retries = stage.associate(state, cache, model.observation_noise())

    assert retries == 0
    assert len(batch) == 1
    assert batch.association == []


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
