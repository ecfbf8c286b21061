"""
Runnable demonstrations of IMU preintegration.

Examples:
    - example_preintegration.py: one keyframe window on a circular trajectory,
      prediction error and covariance consistency
"""

__all__ = []
