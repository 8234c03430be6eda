"""
配置模块测试

验证：
1. 默认配置与预设有效
2. 范围检查与逻辑一致性检查的严重级别
3. KFOptions 类型化参数
4. YAML 加载与合并
"""
import copy
import logging
import sys
import os

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from kalman_slam.config import (
    DEFAULT_CONFIG, KFOptions, ValidationSeverity, create_default_config,
    dump_config, get_config_value, load_config, merge_config, validate_config,
)
from kalman_slam.core.enums import KFMethod
from kalman_slam.core.exceptions import ConfigurationError, ConfigValidationError
from kalman_slam.tests.fixtures import make_config


def _error_keys(errors, severity=None):
    return [key for key, _, s in errors if severity is None or s == severity]


# =============================================================================
# 验证
# =============================================================================

def test_default_config_is_valid():
    """测试默认配置没有任何问题"""
    assert validate_config(copy.deepcopy(DEFAULT_CONFIG), raise_on_error=False) == []
    validate_config(copy.deepcopy(DEFAULT_CONFIG))

    print("✓ test_default_config_is_valid passed")


def test_unknown_method_is_fatal():
    """测试未知更新策略为致命错误"""
    config = make_config(method='ukf')

    errors = validate_config(config, raise_on_error=False)
    assert _error_keys(errors, ValidationSeverity.FATAL) == ['kf.method']

    with pytest.raises(ConfigValidationError) as exc_info:
        validate_config(config)
    assert exc_info.value.errors[0][0] == 'kf.method'


def test_scalar_ikf_is_fatal():
    """测试逐标量 IKF 在配置阶段即被拒绝"""
    errors = validate_config(make_config(method='ikf_scalar'), raise_on_error=False)
    assert 'kf.method' in _error_keys(errors, ValidationSeverity.FATAL)


def test_ikf_iterations_must_be_positive():
    """测试 IKF 迭代次数下限"""
    errors = validate_config(make_config(ikf_iterations=0), raise_on_error=False)

    assert 'kf.ikf_iterations' in _error_keys(errors, ValidationSeverity.FATAL)
    assert 'kf.ikf_iterations' in _error_keys(errors, ValidationSeverity.ERROR)
    with pytest.raises(ConfigValidationError):
        validate_config(make_config(ikf_iterations=0))

    errors = validate_config(make_config(method='ikf_full', ikf_iterations=2.5), raise_on_error=False)
    assert 'kf.ikf_iterations' in _error_keys(errors, ValidationSeverity.FATAL)


def test_jacobian_increments_validated():
    """测试数值 Jacobian 步长必须为正"""
    for bad in (-1.0, 0.0, [1e-4, 0.0], 'small'):
        errors = validate_config(make_config(transition_jacobian_increment=bad),
                                 raise_on_error=False)
        assert _error_keys(errors, ValidationSeverity.ERROR) == ['kf.transition_jacobian_increment']

    for good in (1e-4, [1e-4, 1e-4, 1e-5]):
        assert validate_config(make_config(observation_jacobian_increment_vehicle=good),
                               raise_on_error=False) == []

    print("✓ test_jacobian_increments_validated passed")


def test_verify_requires_threshold():
    """测试开启交叉验证时必须配置阈值"""
    config = make_config(verify_analytic_jacobians=True, verify_jacobian_threshold=None)

    errors = validate_config(config, raise_on_error=False)
    assert _error_keys(errors, ValidationSeverity.ERROR) == ['kf.verify_jacobian_threshold']


def test_flags_must_be_boolean():
    """测试开关参数类型"""
    errors = validate_config(make_config(enable_profiler='yes'), raise_on_error=False)
    assert _error_keys(errors, ValidationSeverity.ERROR) == ['kf.enable_profiler']


def test_warnings_do_not_raise(caplog):
    """测试警告级别的问题只记录日志"""
    config = make_config(method='ekf_davison', ikf_iterations=3)

    with caplog.at_level(logging.WARNING):
        errors = validate_config(config)

    assert _error_keys(errors, ValidationSeverity.WARNING) == ['kf.ikf_iterations']
    assert any('kf.ikf_iterations' in r.getMessage() for r in caplog.records)

    errors = validate_config(make_config(verify_analytic_jacobians=True,
                                         use_analytic_transition_jacobian=False,
                                         use_analytic_observation_jacobian=False))
    assert _error_keys(errors, ValidationSeverity.WARNING) == ['kf.verify_analytic_jacobians']


def test_diagnostics_ranges():
    """测试诊断参数范围"""
    config = make_config()
    config['diagnostics']['covariance_explosion_thresh'] = 0.5

    errors = validate_config(config, raise_on_error=False)
    assert _error_keys(errors) == ['diagnostics.covariance_explosion_thresh']


def test_unknown_keys_warn():
    """测试未知参数名只产生警告"""
    config = make_config(ikf_iteration=3)
    config['diagnostics']['log_summary'] = False

    errors = validate_config(config)

    assert sorted(_error_keys(errors, ValidationSeverity.WARNING)) == [
        'diagnostics.log_summary', 'kf.ikf_iteration']


def test_get_config_value():
    """测试点分隔路径取值与备选配置"""
    config = {'kf': {'ikf_iterations': 3}}

    assert get_config_value(config, 'kf.ikf_iterations') == 3
    assert get_config_value(config, 'kf.method') is None
    assert get_config_value(config, 'kf.method', default='ekf_naive') == 'ekf_naive'
    assert get_config_value(config, 'kf.method', fallback_config=DEFAULT_CONFIG) == 'ekf_naive'
    assert get_config_value(config, 'kf.ikf_iterations.extra', default=-1) == -1


# =============================================================================
# KFOptions
# =============================================================================

def test_options_defaults():
    """测试默认参数"""
    options = KFOptions.from_config(None)

    assert options.method == KFMethod.EKF_NAIVE
    assert options.num_update_iterations == 1
    assert options.transition_jacobian_increment is None
    assert options.log_cycle_summary
    assert options.covariance_explosion_thresh == 1e6


def test_options_from_full_and_kf_only_config():
    """测试完整配置与仅 kf 节两种形式"""
    config = make_config(method='ikf_full', ikf_iterations=3, enable_profiler=True)
    config['diagnostics']['asymmetry_warning_interval'] = 0.5
    options = KFOptions.from_config(config)

    assert options.method == KFMethod.IKF_FULL
    assert options.num_update_iterations == 3
    assert options.enable_profiler
    assert options.asymmetry_warning_interval == 0.5

    options = KFOptions.from_config({'method': 'EKF_DAVISON', 'transition_jacobian_increment': 1e-3})
    assert options.method == KFMethod.EKF_DAVISON
    assert options.num_update_iterations == 1
    assert np.array_equal(options.transition_jacobian_increment, [1e-3])

    print("✓ test_options_from_full_and_kf_only_config passed")


def test_options_reject_invalid_values():
    """测试无效参数在构造参数时被拒绝"""
    for overrides in ({'method': 'bogus'},
                      {'ikf_iterations': 0},
                      {'ikf_iterations': True},
                      {'verify_jacobian_threshold': None},
                      {'observation_jacobian_increment_feature': [1e-4, -1e-4]}):
        with pytest.raises(ConfigurationError):
            KFOptions.from_config(make_config(**overrides))


def test_method_from_value():
    """测试更新策略解析"""
    assert KFMethod.from_value('ekf_naive') == KFMethod.EKF_NAIVE
    assert KFMethod.from_value(' IKF_FULL ') == KFMethod.IKF_FULL
    assert KFMethod.from_value(2) == KFMethod.EKF_DAVISON
    assert KFMethod.from_value(KFMethod.IKF_SCALAR) == KFMethod.IKF_SCALAR
    assert KFMethod.EKF_DAVISON.is_scalar()
    assert KFMethod.IKF_FULL.is_full_matrix()

    for bad in ('ukf', 7, True, None):
        with pytest.raises(ValueError):
            KFMethod.from_value(bad)


# =============================================================================
# 预设
# =============================================================================

def test_profiles():
    """测试预设配置有效且互不影响"""
    balanced = create_default_config('balanced')
    debug = create_default_config('debug')
    fast = create_default_config('fast')

    assert balanced == DEFAULT_CONFIG
    assert debug['kf']['verify_analytic_jacobians']
    assert debug['kf']['enable_profiler']
    assert fast['kf']['method'] == 'ekf_davison'
    assert DEFAULT_CONFIG['kf']['verify_analytic_jacobians'] is False

    for config in (balanced, debug, fast):
        assert validate_config(config, raise_on_error=False) == []

    with pytest.raises(ValueError):
        create_default_config('turbo')


# =============================================================================
# YAML 加载
# =============================================================================

def test_load_config_merges_over_defaults(tmp_path):
    """测试 YAML 只需写出差异键"""
    path = tmp_path / 'kf_params.yaml'
    path.write_text("kf:\n  method: ikf_full\n  ikf_iterations: 3\n", encoding='utf-8')

    config = load_config(path)

    assert config['kf']['method'] == 'ikf_full'
    assert config['kf']['ikf_iterations'] == 3
    assert config['kf']['verify_jacobian_threshold'] == DEFAULT_CONFIG['kf']['verify_jacobian_threshold']
    assert config['diagnostics'] == DEFAULT_CONFIG['diagnostics']
    assert DEFAULT_CONFIG['kf']['method'] == 'ekf_naive'

    print("✓ test_load_config_merges_over_defaults passed")


def test_load_config_errors(tmp_path):
    """测试文件缺失、解析失败与顶层类型错误"""
    with pytest.raises(ConfigurationError):
        load_config(tmp_path / 'missing.yaml')

    broken = tmp_path / 'broken.yaml'
    broken.write_text("kf: [unclosed\n", encoding='utf-8')
    with pytest.raises(ConfigurationError):
        load_config(broken)

    listing = tmp_path / 'list.yaml'
    listing.write_text("- ekf_naive\n- ikf_full\n", encoding='utf-8')
    with pytest.raises(ConfigurationError):
        load_config(listing)

    invalid = tmp_path / 'invalid.yaml'
    invalid.write_text("kf:\n  method: bogus\n", encoding='utf-8')
    with pytest.raises(ConfigValidationError):
        load_config(invalid)
    assert load_config(invalid, validate=False)['kf']['method'] == 'bogus'


def test_empty_file_gives_defaults(tmp_path):
    """测试空文件得到默认配置"""
    path = tmp_path / 'empty.yaml'
    path.write_text("", encoding='utf-8')

    assert load_config(path) == DEFAULT_CONFIG


def test_dump_then_load(tmp_path):
    """测试导出的配置可以重新加载"""
    config = create_default_config('debug')
    path = tmp_path / 'debug.yaml'

    dump_config(config, path)

    assert load_config(path) == config


def test_merge_config_does_not_modify_inputs():
    """测试合并返回新字典"""
    base = {'kf': {'method': 'ekf_naive', 'ikf_iterations': 5}}
    override = {'kf': {'method': 'ikf_full'}, 'extra': {'a': 1}}

    merged = merge_config(base, override)

    assert merged == {'kf': {'method': 'ikf_full', 'ikf_iterations': 5}, 'extra': {'a': 1}}
    assert base['kf']['method'] == 'ekf_naive'
    merged['extra']['a'] = 2
    assert override['extra']['a'] == 1


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
