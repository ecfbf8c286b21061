"""Noise models used to weight preintegrated IMU measurements."""

from imu_preintegration.noise.gaussian import GaussianNoiseModel

__all__ = ["GaussianNoiseModel"]
