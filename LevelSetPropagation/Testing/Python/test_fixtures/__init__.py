"""Test fixtures and synthetic data generators for LevelSetPropagation tests."""

from .scripted_evolvers import ScriptedEvolver, ThresholdStubEvolver, evolver_factory
from .synthetic_slices import (
    create_disk_stack,
    create_gradient_stack,
    create_uniform_stack,
    disk_mask,
    phi_from_mask,
)

__all__ = [
    "create_disk_stack",
    "create_uniform_stack",
    "create_gradient_stack",
    "disk_mask",
    "phi_from_mask",
    "ScriptedEvolver",
    "ThresholdStubEvolver",
    "evolver_factory",
]
