"""
Configuration Profiles

Provides standard configuration presets for the Kalman filter engine.
"""
from typing import Dict, Any
import copy
from .default_config import DEFAULT_CONFIG


def create_default_config(profile: str = "balanced") -> Dict[str, Any]:
    """
    Create a default configuration based on a profile.

    Args:
        profile: Profile name ("balanced", "debug", "fast")

    Returns:
        Complete configuration dictionary
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if profile == "balanced":
        # Balanced: Standard defaults (already in DEFAULT_CONFIG)
        pass

    elif profile == "debug":
        # Debug: check every analytic Jacobian against finite differences, time every stage
        config['kf']['verify_analytic_jacobians'] = True
        config['kf']['enable_profiler'] = True
        config['diagnostics']['asymmetry_warning_interval'] = 0.0

    elif profile == "fast":
        # Fast: scalar-sequential update, no matrix inversion, no verification
        config['kf']['method'] = 'ekf_davison'
        config['kf']['verify_analytic_jacobians'] = False
        config['kf']['enable_profiler'] = False
        config['diagnostics']['log_cycle_summary'] = False

    else:
        raise ValueError(f"Unknown profile: {profile}. Available: balanced, debug, fast")

    return config
