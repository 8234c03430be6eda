"""
卡尔曼滤波 SLAM 主入口 - 演示脚本

在仿真的网格路标环境中绕圈行驶，运行距离-方位 EKF-SLAM。
使用模拟数据，不适用于生产环境。

演示用法:
    python -m kalman_slam.main
"""
import logging

import numpy as np

from . import __version__
from .config import create_default_config
from .core.logging_config import configure_logging
from .estimator.kalman_filter import KalmanFilterEngine
from .mock.range_bearing_slam import RangeBearingSLAMModel
from .mock.test_data_generator import (
    RangeBearingSimulator, create_circle_controls, create_landmark_grid,
)


def main():
    """主函数"""
    configure_logging(logging.INFO)

    print("=" * 60)
    print(f"卡尔曼滤波 SLAM (Kalman SLAM) v{__version__}")
    print("=" * 60)

    config = create_default_config("balanced")
    config['kf']['enable_profiler'] = True

    landmarks = create_landmark_grid()
    simulator = RangeBearingSimulator(landmarks, max_range=8.0, seed=42)
    model = RangeBearingSLAMModel(max_range=8.0)
    engine = KalmanFilterEngine(model, config)
    engine.set_initial_state(np.zeros(3), np.diag([1e-4, 1e-4, 1e-5]))

    print(f"\n更新策略: {config['kf']['method']}")
    print(f"真值路标数: {len(landmarks)}")

    print("\n开始滤波循环...")
    print("-" * 60)

    for i, u in enumerate(create_circle_controls(num_steps=120, speed=0.3, turn_rate=0.05)):
        odometry, observations = simulator.step(u)
        model.set_step(odometry, observations)
        info = engine.run_one_iteration()

        if i % 20 == 0:
            pose = engine.get_vehicle_mean()
            error = np.hypot(*(pose[:2] - simulator.pose[:2]))
            print(f"Step {i:3d}: pose=({pose[0]:.2f}, {pose[1]:.2f}, {np.degrees(pose[2]):.1f}°), "
                  f"err={error:.3f}m, obs={info.num_observations}, LMs={engine.num_landmarks}")

    print("-" * 60)
    print("\n滤波循环完成")

    output = engine.get_state()
    print(f"\n地图路标数: {output.num_landmarks}")
    for lm_id in output.landmark_ids:
        index = engine.get_landmark_index(lm_id)
        estimate = engine.get_landmark_mean(index)
        print(f"  LM {lm_id:2d}: est=({estimate[0]:6.2f}, {estimate[1]:6.2f}) "
              f"true=({landmarks[lm_id][0]:6.2f}, {landmarks[lm_id][1]:6.2f})")

    print("\n阶段耗时 (平均):")
    for name, stats in engine.get_profiler_stats().items():
        print(f"  {name:22s} {1000.0 * stats['mean']:.3f} ms")

    health = engine.get_health_status()
    print(f"\n滤波器状态: {health['state']} ({health['message']})")


if __name__ == "__main__":
    main()
