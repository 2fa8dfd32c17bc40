"""Contract between the propagation controller and a per-slice evolver.

The controller never looks inside an evolver: it only seeds it, steps it,
polls it for convergence, measures fields through it, and commits its
result. Concrete evolvers implement the per-pixel update in ``step()``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

import numpy as np
import PhiOperations
from VolumeData import CommittedResult, SliceState

if TYPE_CHECKING:
    from HistogramCalibrator import GlobalThresholds
    from VolumeData import Slice

logger = logging.getLogger(__name__)


class SliceEvolver(ABC):
    """Base class for one slice's contour evolution.

    Attributes:
        slice: The Slice whose ``phi`` this evolver owns.
        thresholds: Global thresholds shared by every slice.
        default_curvature: Curvature weight restored by ``initialize_parameters``.
    """

    def __init__(
        self,
        slice_: Slice,
        thresholds: Optional[GlobalThresholds] = None,
        default_curvature: float = 1.0,
    ) -> None:
        self.slice = slice_
        self.thresholds = thresholds
        self.default_curvature = default_curvature
        self.slice.curvature_weight = default_curvature
        self._committed: Optional[CommittedResult] = None

    @property
    def index(self) -> int:
        return self.slice.index

    @property
    def phi(self) -> Optional[np.ndarray]:
        """Current level set field of the slice."""
        return self.slice.phi

    @phi.setter
    def phi(self, value: Optional[np.ndarray]) -> None:
        self.slice.phi = value

    @property
    def iteration(self) -> int:
        return self.slice.iteration

    @property
    def committed_result(self) -> Optional[CommittedResult]:
        return self._committed

    def initialize_phi(self, phi: np.ndarray) -> None:
        """Replace this slice's field with a copy of ``phi``.

        Raises:
            ValueError: If the grid does not match this slice.
        """
        phi = np.asarray(phi)
        if phi.shape != self.slice.shape:
            raise ValueError(
                f"Field shape {phi.shape} does not match "
                f"slice {self.index} shape {self.slice.shape}"
            )
        self.phi = np.array(phi, dtype=np.float64, copy=True)

    def initialize_from_neighbor(self, neighbor_phi: np.ndarray) -> None:
        """Seed this slice's field with a copy of a resolved neighbor's field."""
        self.initialize_phi(neighbor_phi)

    def initialize_parameters(self) -> None:
        """Reset the iteration counter and curvature weight to defaults."""
        self.slice.iteration = 0
        self.slice.curvature_weight = self.default_curvature

    def shrink_seed(self, phi: np.ndarray, shrink_amount: int) -> np.ndarray:
        """Move the zero level inward by ``shrink_amount`` pixels.

        The field is first rebuilt as a signed distance field so that each
        unit subtracted from it peels exactly one layer of pixels.

        Args:
            phi: Field to shrink (left untouched).
            shrink_amount: Number of one-pixel erosions; values below 1 are a no-op.

        Returns:
            The shrunk field.
        """
        amount = max(0, int(shrink_amount))
        if amount == 0:
            return np.array(phi, dtype=np.float64, copy=True)

        result = PhiOperations.reinitialize(phi)
        for _ in range(amount):
            result = PhiOperations.reinitialize(result - 1.0)
        return result

    @abstractmethod
    def step(self) -> None:
        """Perform one evolution iteration in place."""

    @abstractmethod
    def is_stationary(self) -> bool:
        """Return True once successive iterations stop changing the field."""

    @abstractmethod
    def adjust_curvature(self) -> None:
        """Raise the smoothing weight after a rejected result."""

    def is_frozen(self) -> bool:
        """Return True if an observer asked this slice to stop evolving."""
        return self.slice.frozen

    def mask_area(self, phi: Optional[np.ndarray] = None) -> int:
        """Return the inside pixel count of ``phi`` (defaults to the current field)."""
        field = self.phi if phi is None else phi
        if field is None:
            return 0
        return PhiOperations.mask_area(field)

    def contour_length(self, phi: Optional[np.ndarray] = None) -> int:
        """Return the boundary pixel count of ``phi`` (defaults to the current field)."""
        field = self.phi if phi is None else phi
        if field is None:
            return 0
        return PhiOperations.contour_length(field)

    def set_phi_zero(self) -> None:
        """Force an empty mask."""
        self.phi = PhiOperations.empty_phi(self.slice.shape)

    def commit(self, state: SliceState = SliceState.ACCEPTED) -> CommittedResult:
        """Freeze the current field as this slice's output.

        Args:
            state: ACCEPTED or ROLLED_BACK.

        Returns:
            The CommittedResult.

        Raises:
            RuntimeError: If the slice was already committed or has no field.
        """
        if self._committed is not None:
            raise RuntimeError(f"Slice {self.index} is already committed")
        if self.phi is None:
            raise RuntimeError(f"Slice {self.index} has no field to commit")

        self._committed = CommittedResult(slice_index=self.index, phi=self.phi, state=state)
        self.slice.committed = True
        logger.debug(f"Committed slice {self.index} ({state.value})")
        return self._committed
