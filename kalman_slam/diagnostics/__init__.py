"""诊断模块"""
from .profiler import StageProfiler, StageStats

__all__ = ['StageProfiler', 'StageStats']
