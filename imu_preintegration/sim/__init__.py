"""
Simulation utilities: analytic motion scenarios and an IMU sample generator.

Modules:
    scenario: ConstantTwistScenario, AccelerationScenario, ScenarioRunner
"""

from imu_preintegration.sim.scenario import (
    AccelerationScenario,
    ConstantTwistScenario,
    Scenario,
    ScenarioRunner,
)

__all__ = [
    "AccelerationScenario",
    "ConstantTwistScenario",
    "Scenario",
    "ScenarioRunner",
]
