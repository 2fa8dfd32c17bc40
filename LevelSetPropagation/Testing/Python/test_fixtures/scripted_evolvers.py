"""Deterministic SliceEvolver implementations for controller tests.

These evolvers replace the level set PDE with scripted candidates so that
tests control exactly what each slice converges to.
"""

from typing import Callable, Dict, Optional, Union

import numpy as np
from SliceEvolver import SliceEvolver

Candidate = Union[np.ndarray, Callable[["ScriptedEvolver"], np.ndarray]]


class ScriptedEvolver(SliceEvolver):
    """Evolver whose ``step()`` replaces phi with a scripted candidate.

    Counts every contract call so tests can assert on the controller's
    sequencing. It is stationary after ``stationary_after`` steps since the
    last seeding.
    """

    def __init__(
        self,
        slice_,
        thresholds=None,
        candidate: Optional[Candidate] = None,
        stationary_after: int = 1,
        fail_on_step: bool = False,
    ):
        super().__init__(slice_, thresholds)
        self.candidate = candidate
        self.stationary_after = stationary_after
        self.fail_on_step = fail_on_step

        self.step_calls = 0
        self.adjust_calls = 0
        self.seed_calls = 0
        self.parameter_resets = 0
        self.shrink_amounts = []
        self._steps_since_seed = 0

    def initialize_from_neighbor(self, neighbor_phi):
        self.seed_calls += 1
        super().initialize_from_neighbor(neighbor_phi)

    def initialize_phi(self, phi):
        self._steps_since_seed = 0
        super().initialize_phi(phi)

    def initialize_parameters(self):
        self.parameter_resets += 1
        super().initialize_parameters()

    def shrink_seed(self, phi, shrink_amount):
        self.shrink_amounts.append(shrink_amount)
        return super().shrink_seed(phi, shrink_amount)

    def step(self):
        if self.fail_on_step:
            raise RuntimeError(f"scripted failure on slice {self.index}")
        self.step_calls += 1
        self._steps_since_seed += 1
        self.slice.iteration += 1
        if self.candidate is None:
            return
        phi = self.candidate(self) if callable(self.candidate) else self.candidate
        self.phi = np.array(phi, dtype=np.float64)

    def is_stationary(self):
        return self._steps_since_seed >= self.stationary_after

    def adjust_curvature(self):
        self.adjust_calls += 1
        self.slice.curvature_weight *= 5.0


class ThresholdStubEvolver(ScriptedEvolver):
    """Evolver that converges in one step to the pixels above mid-range intensity."""

    def __init__(self, slice_, thresholds=None, **kwargs):
        super().__init__(slice_, thresholds, candidate=self._threshold_candidate, **kwargs)

    @staticmethod
    def _threshold_candidate(evolver):
        t = evolver.thresholds
        if t.is_degenerate:
            return np.full(evolver.slice.shape, -1.0)
        level = (t.intens2 + t.intens98) / 2.0
        return np.where(evolver.slice.image > level, 1.0, -1.0)


def evolver_factory(
    registry: Optional[Dict[int, ScriptedEvolver]] = None,
    candidates: Optional[Dict[int, Candidate]] = None,
    evolver_class=ScriptedEvolver,
    **kwargs,
):
    """Build a controller ``evolver_factory`` producing scripted evolvers.

    Args:
        registry: Filled with the evolver created for each slice index.
        candidates: Per-slice candidate overrides (index -> array or callable).
        evolver_class: ScriptedEvolver or a subclass.
        **kwargs: Passed to every evolver.

    Returns:
        Callable ``(slice_, thresholds, config) -> SliceEvolver``.
    """
    candidates = candidates or {}

    def factory(slice_, thresholds, config):
        options = dict(kwargs)
        if slice_.index in candidates:
            options["candidate"] = candidates[slice_.index]
        evolver = evolver_class(slice_, thresholds, **options)
        if registry is not None:
            registry[slice_.index] = evolver
        return evolver

    return factory
