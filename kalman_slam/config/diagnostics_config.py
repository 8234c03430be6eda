"""诊断配置

日志与协方差健康检查参数：
- 对称性修正警告的节流间隔
- 每次迭代的调试摘要
- 协方差健康阈值
"""

DIAGNOSTICS_CONFIG = {
    'log_cycle_summary': True,                 # 每次迭代记录 DEBUG 摘要
    'asymmetry_warning_interval': 5.0,         # 对称性修正警告最小间隔 (秒)
    'covariance_explosion_thresh': 1e6,        # 协方差对角线上限，超过视为不健康
}

DIAGNOSTICS_VALIDATION_RULES = {
    'diagnostics.asymmetry_warning_interval': (0.0, 3600.0, '对称性警告节流间隔 (秒)'),
    'diagnostics.covariance_explosion_thresh': (1.0, None, '协方差爆炸检测阈值'),
}
