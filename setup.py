#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Kalman SLAM 安装脚本

安装方法:
    # 可编辑安装 (推荐开发时使用)
    pip install -e .

    # 含测试依赖
    pip install -e .[test]
"""

from setuptools import setup, find_packages

setup(
    name='kalman-slam',
    version='1.0.0',
    author='Kalman SLAM Team',
    description='通用 EKF/IKF 卡尔曼滤波 SLAM 引擎',

    # 自动查找包
    packages=find_packages(include=['kalman_slam', 'kalman_slam.*']),

    # 依赖
    install_requires=[
        'numpy>=1.20.0',
        'scipy>=1.7.0',
        'PyYAML>=5.4.0',
    ],
    extras_require={
        'test': ['pytest>=6.0'],
    },

    # Python 版本要求
    python_requires='>=3.8',

    # 包含数据文件
    include_package_data=True,
    zip_safe=False,
)
