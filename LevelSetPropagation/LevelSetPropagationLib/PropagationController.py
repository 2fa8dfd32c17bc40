"""Center-outward propagation of slice contours.

The controller segments the center slice first, then sweeps down to slice
0 and up to slice N-1. Every slice is seeded from the committed contour of
the slice processed just before it, evolved to convergence, checked for
plausibility, and either accepted, retried with a smoother contour, or
rolled back to a copy of its neighbor.

The controller itself is synchronous. Progress reporting and cancellation
are optional hooks so that a worker thread (see PropagationWorker) can
drive it without the controller knowing about threads or displays.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import numpy as np
import PhiOperations
from AcceptanceEvaluator import AcceptanceEvaluator
from HistogramCalibrator import GlobalThresholds, HistogramCalibrator
from LevelSetEvolver import LevelSetEvolver
from MaskWriter import MaskWriter
from PropagationConfig import PropagationConfig
from RetryPolicy import RetryAction, RetryPolicy
from SliceEvolver import SliceEvolver
from VolumeData import CommittedResult, Slice, SliceRecord, SliceState, VolumeStack
from ZeroLevelInitializer import ZeroLevelInitializer

logger = logging.getLogger(__name__)


@dataclass
class ProgressEvent:
    """Notification posted to observers while propagation runs."""

    slice_index: int
    state: SliceState
    iteration: int = 0
    attempt: int = 0
    message: str = ""


class CancellationToken:
    """Thread-safe flag asking the controller to stop evolving.

    Cancellation never leaves a slice unlabeled: slices still pass through
    evaluation and commit, they just skip any further evolution steps.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class PropagationResult:
    """Committed contours and bookkeeping of a finished propagation."""

    committed: list[CommittedResult]
    """One result per slice, in index order."""

    records: list[SliceRecord]
    thresholds: GlobalThresholds
    center_index: int
    cancelled: bool = False

    def rolled_back_indices(self) -> list[int]:
        """Return indices of slices whose result is a copy of their neighbor."""
        return [r.slice_index for r in self.committed if r.state == SliceState.ROLLED_BACK]

    def accepted_indices(self) -> list[int]:
        """Return indices of slices with an independently evolved result."""
        return [r.slice_index for r in self.committed if r.state == SliceState.ACCEPTED]

    def masks(self) -> np.ndarray:
        """Return the committed masks stacked as a boolean (N, rows, columns) array."""
        return np.stack([PhiOperations.to_mask(r.phi) for r in self.committed])

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "center_index": self.center_index,
            "cancelled": self.cancelled,
            "thresholds": self.thresholds.to_dict(),
            "accepted": self.accepted_indices(),
            "rolled_back": self.rolled_back_indices(),
            "slices": [record.to_dict() for record in self.records],
        }


@dataclass
class _Sweep:
    """Limits of one propagation direction."""

    name: str
    iteration_cap: int
    area_floor: int
    shrink_amount: int
    indices: range


EvolverFactory = Callable[[Slice, GlobalThresholds, PropagationConfig], SliceEvolver]
SeedFactory = Callable[[Slice, GlobalThresholds], np.ndarray]
ProgressCallback = Callable[[ProgressEvent], None]


def create_level_set_evolver(
    slice_: Slice, thresholds: GlobalThresholds, config: PropagationConfig
) -> SliceEvolver:
    """Build the SimpleITK evolver with the evolver settings of ``config``."""
    return LevelSetEvolver(
        slice_,
        thresholds,
        curvature_weight=config.curvature_weight,
        propagation_weight=config.propagation_weight,
        curvature_adjust_factor=config.curvature_adjust_factor,
        iterations_per_step=config.iterations_per_step,
        threshold_selector=config.threshold_selector,
        stationary_max=config.stationary_max,
        max_rms_error=config.max_rms_error,
    )


def shrink_amounts(inter_slice_distance: float) -> tuple[int, int]:
    """Return the (downward, upward) seed erosion in pixels.

    Downward seeds round ``|d|`` half up, upward seeds round it half down.
    """
    distance = abs(inter_slice_distance)
    downward = max(0, math.floor(distance + 0.5))
    upward = max(0, math.floor(distance - 0.5))
    return downward, upward


class PropagationController:
    """Orchestrate center-outward propagation over a VolumeStack.

    Usage:
        controller = PropagationController(volume, config)
        result = controller.run()
        for committed in result.committed:
            ...
    """

    def __init__(
        self,
        volume: VolumeStack,
        config: Optional[PropagationConfig] = None,
        evolver_factory: Optional[EvolverFactory] = None,
        seed_factory: Optional[SeedFactory] = None,
        calibrator: Optional[HistogramCalibrator] = None,
        evaluator: Optional[AcceptanceEvaluator] = None,
        retry_policy: Optional[RetryPolicy] = None,
        mask_writer: Optional[MaskWriter] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ):
        """Initialize the controller.

        Args:
            volume: Slices to segment.
            config: Tunables; defaults to PropagationConfig().
            evolver_factory: Builds one SliceEvolver per slice. Defaults to
                the SimpleITK level set evolver.
            seed_factory: Builds the center slice's initial field. Defaults
                to a circle placed by ZeroLevelInitializer.
            calibrator: Histogram calibrator for the global thresholds.
            evaluator: Acceptance test; defaults to one built from ``config``.
            retry_policy: Retry bound; defaults to ``config.max_retries``.
            mask_writer: Receives every committed result. Defaults to a
                MaskWriter when ``config.output_dir`` is set.
            progress_callback: Called with ProgressEvent notifications.
            cancel_token: Stops further evolution when cancelled.

        Raises:
            ValueError: If the config does not validate.
        """
        self.volume = volume
        self.config = config or PropagationConfig()
        errors = self.config.validate()
        if errors:
            raise ValueError("Invalid propagation config: " + "; ".join(errors))
        self.evolver_factory = evolver_factory or create_level_set_evolver
        self.seed_factory = seed_factory or self._default_seed
        self.calibrator = calibrator or HistogramCalibrator()
        self.evaluator = evaluator or AcceptanceEvaluator.from_config(self.config)
        self.retry_policy = retry_policy or RetryPolicy(self.config.max_retries)
        if mask_writer is None and self.config.output_dir is not None:
            mask_writer = MaskWriter(self.config.output_dir, fill_holes=self.config.fill_holes)
        self.mask_writer = mask_writer
        self.progress_callback = progress_callback
        self.cancel_token = cancel_token or CancellationToken()

        self.records: list[SliceRecord] = []
        self.thresholds: Optional[GlobalThresholds] = None

    def _default_seed(self, slice_: Slice, thresholds: GlobalThresholds) -> np.ndarray:
        initializer = ZeroLevelInitializer(
            radius=self.config.initial_radius,
            center_offset_y=self.config.center_offset_y,
        )
        return initializer.initial_phi(slice_.image, thresholds)

    def run(self) -> PropagationResult:
        """Segment every slice of the volume.

        Returns:
            PropagationResult with exactly one committed result per slice.

        Raises:
            MalformedVolumeError: If the volume has no defined center slice.
        """
        count = len(self.volume)
        center = self.volume.center_index()
        start_time = time.time()

        self.thresholds = self.calibrator.calibrate(s.image for s in self.volume)
        self.records = [SliceRecord(index=i) for i in range(count)]
        committed: list[Optional[CommittedResult]] = [None] * count

        guard_band = self.volume.guard_band(
            self.config.guard_band_low_fraction, self.config.guard_band_high_fraction
        )
        downward_shrink, upward_shrink = shrink_amounts(self.volume.inter_slice_distance)
        logger.info(
            f"Propagating {count} slices from center {center}; "
            f"guard band {guard_band.start}..{guard_band.stop - 1}"
        )

        committed[center] = self._process_center(self.volume[center])

        sweeps = [
            _Sweep(
                name="downward",
                iteration_cap=self.config.downward_iteration_cap,
                area_floor=self.config.min_area_floor_downward,
                shrink_amount=downward_shrink,
                indices=range(center - 1, -1, -1),
            ),
            _Sweep(
                name="upward",
                iteration_cap=self.config.upward_iteration_cap,
                area_floor=self.config.min_area_floor_upward,
                shrink_amount=upward_shrink,
                indices=range(center + 1, count),
            ),
        ]
        for sweep in sweeps:
            step = sweep.indices.step
            for index in sweep.indices:
                neighbor = committed[index - step]
                committed[index] = self._process_slice(
                    self.volume[index], neighbor, sweep, in_guard_band=index in guard_band
                )

        result = PropagationResult(
            committed=[c for c in committed if c is not None],
            records=self.records,
            thresholds=self.thresholds,
            center_index=center,
            cancelled=self.cancel_token.is_cancelled,
        )
        logger.info(
            f"Propagation finished in {time.time() - start_time:.1f}s: "
            f"{len(result.accepted_indices())} accepted, "
            f"{len(result.rolled_back_indices())} rolled back"
        )
        return result

    def _process_center(self, slice_: Slice) -> CommittedResult:
        """Evolve the center slice from its seed and accept it unconditionally."""
        record = self.records[slice_.index]
        evolver: Optional[SliceEvolver] = None
        try:
            evolver = self.evolver_factory(slice_, self.thresholds, self.config)
            evolver.initialize_phi(self.seed_factory(slice_, self.thresholds))
            evolver.initialize_parameters()
            record.transition(SliceState.SEEDED)

            record.transition(SliceState.EVOLVING)
            self._evolve(evolver, record, self.config.center_iteration_cap, area_floor=None)
            record.transition(SliceState.CONVERGED)

            result = evolver.commit(SliceState.ACCEPTED)
        except Exception as e:
            logger.error(f"Center slice {slice_.index} failed: {e}")
            record.error = str(e)
            result = self._fallback_center(slice_, evolver)

        return self._finish(record, result)

    def _fallback_center(
        self, slice_: Slice, evolver: Optional[SliceEvolver]
    ) -> CommittedResult:
        if evolver is not None and evolver.committed_result is not None:
            return evolver.committed_result

        phi = slice_.phi
        if phi is None or phi.shape != slice_.shape:
            phi = PhiOperations.empty_phi(slice_.shape)
        return self._commit_directly(slice_, phi, SliceState.ACCEPTED)

    def _process_slice(
        self,
        slice_: Slice,
        neighbor: CommittedResult,
        sweep: _Sweep,
        in_guard_band: bool,
    ) -> CommittedResult:
        """Seed, evolve, and judge one slice until it is accepted or rolled back."""
        record = self.records[slice_.index]
        record.neighbor_index = neighbor.slice_index

        try:
            evolver = self.evolver_factory(slice_, self.thresholds, self.config)
            self.retry_policy.start(record)
            first_round = True

            while True:
                self._seed(evolver, neighbor, sweep.shrink_amount, first_round)
                first_round = False
                record.transition(SliceState.SEEDED)

                record.transition(SliceState.EVOLVING)
                self._evolve(evolver, record, sweep.iteration_cap, sweep.area_floor)
                record.transition(SliceState.CONVERGED)

                if in_guard_band:
                    logger.info(f"Slice {slice_.index}: in guard band, accepted without test")
                    result = evolver.commit(SliceState.ACCEPTED)
                    break

                decision = self.evaluator.evaluate(evolver.phi, evolver, neighbor.phi)
                record.evaluations += 1
                record.jaccard = decision.jaccard
                record.area_difference = decision.area_difference

                action = self.retry_policy.next_action(record, decision)
                if action == RetryAction.ACCEPT:
                    result = evolver.commit(SliceState.ACCEPTED)
                    break
                if action == RetryAction.ROLLBACK:
                    result = self.retry_policy.rollback(evolver, neighbor.phi)
                    break
                self._notify(
                    ProgressEvent(
                        slice_index=slice_.index,
                        state=SliceState.RETRYING,
                        iteration=slice_.iteration,
                        attempt=record.attempts,
                        message=decision.reason,
                    )
                )
        except Exception as e:
            logger.error(
                f"Slice {slice_.index} ({sweep.name}) failed: {e}; "
                f"rolling back to slice {neighbor.slice_index}"
            )
            record.error = str(e)
            result = self._commit_directly(slice_, neighbor.phi, SliceState.ROLLED_BACK)

        return self._finish(record, result)

    def _seed(
        self,
        evolver: SliceEvolver,
        neighbor: CommittedResult,
        shrink_amount: int,
        reset_parameters: bool,
    ) -> None:
        """Copy the neighbor's field into the slice and erode it.

        Parameters are only reset before the first round, so curvature
        raised by a rejection carries over into the retry.
        """
        evolver.initialize_from_neighbor(neighbor.phi)
        if reset_parameters:
            evolver.initialize_parameters()
        evolver.phi = evolver.shrink_seed(evolver.phi, shrink_amount)

    def _evolve(
        self,
        evolver: SliceEvolver,
        record: SliceRecord,
        iteration_cap: int,
        area_floor: Optional[int],
    ) -> None:
        """Step the evolver until it converges, is stopped, or reaches the cap.

        When ``area_floor`` is set and the mask shrinks below it, the field
        is emptied and treated as converged.
        """
        for _ in range(iteration_cap):
            if evolver.is_stationary():
                break
            if evolver.is_frozen() or self.cancel_token.is_cancelled:
                logger.debug(f"Slice {evolver.index}: evolution stopped by observer")
                break
            if area_floor is not None and evolver.mask_area() < area_floor:
                logger.debug(f"Slice {evolver.index}: mask area below {area_floor}, emptied")
                evolver.set_phi_zero()
                record.collapsed = True
                break

            evolver.step()
            record.iterations += 1
            self._notify(
                ProgressEvent(
                    slice_index=evolver.index,
                    state=SliceState.EVOLVING,
                    iteration=evolver.iteration,
                    attempt=record.attempts,
                )
            )
            if self.config.step_delay_seconds > 0:
                time.sleep(self.config.step_delay_seconds)

    def _commit_directly(
        self, slice_: Slice, phi: np.ndarray, state: SliceState
    ) -> CommittedResult:
        """Commit ``phi`` without going through an evolver."""
        result = CommittedResult(slice_index=slice_.index, phi=phi, state=state)
        slice_.phi = np.array(result.phi, copy=True)
        slice_.committed = True
        return result

    def _finish(self, record: SliceRecord, result: CommittedResult) -> CommittedResult:
        """Record the committed state, save the mask, and notify observers."""
        record.transition(result.state)
        record.mask_area = PhiOperations.mask_area(result.phi)

        if result.rolled_back:
            logger.warning(
                f"Slice {record.index}: rolled back to slice {record.neighbor_index} "
                f"after {record.evaluations} evaluation(s)"
            )
        else:
            logger.info(
                f"Slice {record.index}: accepted, area={record.mask_area}, "
                f"iterations={record.iterations}"
            )

        if self.mask_writer is not None:
            try:
                self.mask_writer.save_mask(result)
            except Exception as e:
                logger.error(f"Could not save mask for slice {record.index}: {e}")

        self._notify(
            ProgressEvent(
                slice_index=record.index,
                state=result.state,
                iteration=record.iterations,
                attempt=record.attempts,
                message=record.error or "",
            )
        )
        return result

    def _notify(self, event: ProgressEvent) -> None:
        if self.progress_callback is None:
            return
        try:
            self.progress_callback(event)
        except Exception as e:
            logger.debug(f"Progress callback raised: {e}")
