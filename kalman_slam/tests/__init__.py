"""Kalman SLAM 测试"""
