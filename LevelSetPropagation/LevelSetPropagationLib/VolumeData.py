"""Data structures for slice-wise level set propagation.

This module contains the volume, slice, and per-slice bookkeeping records
shared by the calibrator, the evolvers, and the propagation controller.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import numpy as np


class MalformedVolumeError(ValueError):
    """Raised when a volume cannot be propagated (no slices, bad shapes, no center)."""


class SliceState(str, Enum):
    """Processing state of a single slice."""

    PENDING = "pending"
    SEEDED = "seeded"
    EVOLVING = "evolving"
    CONVERGED = "converged"
    RETRYING = "retrying"
    ACCEPTED = "accepted"
    ROLLED_BACK = "rolled_back"

    @property
    def is_terminal(self) -> bool:
        """Return True once the slice has a committed result."""
        return self in (SliceState.ACCEPTED, SliceState.ROLLED_BACK)


@dataclass(frozen=True, eq=False)
class CommittedResult:
    """Frozen phi recorded for a slice once accepted or rolled back.

    The array is copied and marked read-only on construction, so a committed
    result can be shared as a seed without risk of later mutation.
    """

    slice_index: int
    phi: np.ndarray
    state: SliceState

    def __post_init__(self) -> None:
        frozen = np.array(self.phi, dtype=np.float64, copy=True)
        frozen.setflags(write=False)
        object.__setattr__(self, "phi", frozen)

    @property
    def shape(self) -> tuple[int, ...]:
        """Return the grid shape of the committed field."""
        return self.phi.shape

    @property
    def rolled_back(self) -> bool:
        """Return True if this result is a copy of the neighbor's result."""
        return self.state == SliceState.ROLLED_BACK


@dataclass
class Slice:
    """One 2D slice of the volume.

    Owns the intensity image and the mutable level set state that its
    evolver works on. Only the propagation worker mutates ``phi`` and the
    counters; observers may read them and may set the frozen flag.
    """

    index: int
    image: np.ndarray
    """2D intensity grid (rows, columns)."""

    phi: Optional[np.ndarray] = None
    """Level set field; created when processing of this slice begins."""

    curvature_weight: float = 1.0
    """Current smoothing weight used by the evolver."""

    stationary_threshold: int = 4
    """Number of stationarity events tolerated before the slice is stationary."""

    iteration: int = 0
    """Evolution iterations performed since the last parameter reset."""

    committed: bool = False
    """True once a CommittedResult exists for this slice."""

    _frozen: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def shape(self) -> tuple[int, int]:
        """Return the (rows, columns) shape of the slice."""
        return self.image.shape  # type: ignore[return-value]

    @property
    def frozen(self) -> bool:
        """Return True if an observer asked this slice to stop evolving."""
        return self._frozen.is_set()

    def freeze(self) -> None:
        """Request that evolution of this slice stop at the next iteration boundary."""
        self._frozen.set()

    def unfreeze(self) -> None:
        """Clear the frozen flag."""
        self._frozen.clear()


class VolumeStack:
    """Ordered, immutable sequence of slices, indexed top to bottom.

    Attributes:
        slices: Tuple of Slice objects, index 0..N-1.
        inter_slice_distance: Distance between adjacent slices in pixels
            (or millimetres when pixels are isotropic with 1 mm spacing).
    """

    def __init__(self, images: list[np.ndarray], inter_slice_distance: float = 3.0) -> None:
        """Build a stack from a list of 2D intensity grids.

        Args:
            images: Ordered 2D arrays, all with the same shape.
            inter_slice_distance: Spacing between adjacent slices.

        Raises:
            MalformedVolumeError: If there are no slices, a slice is not 2D,
                or slices differ in shape.
        """
        if len(images) == 0:
            raise MalformedVolumeError("Volume has no slices")

        first_shape = np.asarray(images[0]).shape
        slices = []
        for index, image in enumerate(images):
            array = np.asarray(image)
            if array.ndim != 2:
                raise MalformedVolumeError(
                    f"Slice {index} has {array.ndim} dimensions, expected 2"
                )
            if array.shape != first_shape:
                raise MalformedVolumeError(
                    f"Slice {index} has shape {array.shape}, expected {first_shape}"
                )
            slices.append(Slice(index=index, image=array))

        self._slices: tuple[Slice, ...] = tuple(slices)
        self.inter_slice_distance = float(inter_slice_distance)

    @classmethod
    def from_array(cls, volume: np.ndarray, inter_slice_distance: float = 3.0) -> VolumeStack:
        """Build a stack from a 3D array ordered (slice, row, column).

        Args:
            volume: 3D numpy array.
            inter_slice_distance: Spacing between adjacent slices.

        Returns:
            VolumeStack with one slice per leading index.
        """
        volume = np.asarray(volume)
        if volume.ndim != 3:
            raise MalformedVolumeError(f"Expected a 3D array, got {volume.ndim} dimensions")
        return cls([volume[k] for k in range(volume.shape[0])], inter_slice_distance)

    @property
    def slices(self) -> tuple[Slice, ...]:
        return self._slices

    @property
    def slice_shape(self) -> tuple[int, int]:
        """Return the common (rows, columns) shape of every slice."""
        return self._slices[0].shape

    def __len__(self) -> int:
        return len(self._slices)

    def __getitem__(self, index: int) -> Slice:
        return self._slices[index]

    def __iter__(self):
        return iter(self._slices)

    def center_index(self) -> int:
        """Return the index of the slice propagation starts from.

        Returns:
            ``N // 2 - 1``.

        Raises:
            MalformedVolumeError: If the center index is undefined (N < 2).
        """
        center = len(self._slices) // 2 - 1
        if center < 0:
            raise MalformedVolumeError(
                f"Volume with {len(self._slices)} slice(s) has no defined center slice"
            )
        return center

    def guard_band(self, low_fraction: float = 0.45, high_fraction: float = 0.55) -> range:
        """Return the inclusive range of slice indices exempt from acceptance tests.

        Args:
            low_fraction: Lower bound as a fraction of the slice count.
            high_fraction: Upper bound as a fraction of the slice count.

        Returns:
            ``range(floor(low*N), floor(high*N) + 1)``.
        """
        count = len(self._slices)
        return range(int(low_fraction * count), int(high_fraction * count) + 1)


@dataclass
class SliceRecord:
    """Per-slice bookkeeping owned by the propagation controller.

    Replaces loop-local counters with an explicit record of where a slice
    is in its lifecycle and how many evaluation rounds it has used.
    """

    index: int
    neighbor_index: Optional[int] = None
    """Index of the committed slice this slice was seeded from (None for the center)."""

    state: SliceState = SliceState.PENDING
    attempts: int = 0
    """Number of retries consumed (0 on first evaluation)."""

    evaluations: int = 0
    """Number of acceptance evaluations actually performed."""

    iterations: int = 0
    """Total evolution iterations across all rounds."""

    jaccard: Optional[float] = None
    area_difference: Optional[int] = None
    mask_area: Optional[int] = None
    collapsed: bool = False
    """True if the mask area fell below the floor and the field was emptied."""

    error: Optional[str] = None
    history: list[SliceState] = field(default_factory=list)

    def transition(self, state: SliceState) -> None:
        """Move to a new state and remember it in the history."""
        self.state = state
        self.history.append(state)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "index": self.index,
            "neighbor_index": self.neighbor_index,
            "state": self.state.value,
            "attempts": self.attempts,
            "evaluations": self.evaluations,
            "iterations": self.iterations,
            "jaccard": self.jaccard,
            "area_difference": self.area_difference,
            "mask_area": self.mask_area,
            "collapsed": self.collapsed,
            "error": self.error,
        }
