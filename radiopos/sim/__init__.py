"""Synthetic scenario generation for tests, examples and benchmark datasets."""

from radiopos.sim.scenarios import (
    Scenario,
    generate_sources,
    inject_outliers,
    make_scenario,
    simulate_fingerprint,
)

__all__ = [
    "Scenario",
    "generate_sources",
    "inject_outliers",
    "make_scenario",
    "simulate_fingerprint",
]
