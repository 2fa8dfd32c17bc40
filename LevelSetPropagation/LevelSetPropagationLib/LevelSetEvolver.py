"""SimpleITK-backed level set evolver for a single slice.

Each ``step()`` runs a few iterations of SimpleITK's threshold level set
filter on the slice, starting from the current field, and converts the
filter output back to the inside-positive convention used by the pipeline.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

import numpy as np
import PhiOperations
import SimpleITK as sitk
from HistogramCalibrator import HistogramCalibrator
from SliceEvolver import SliceEvolver

if TYPE_CHECKING:
    from HistogramCalibrator import GlobalThresholds
    from VolumeData import Slice

logger = logging.getLogger(__name__)


class LevelSetEvolver(SliceEvolver):
    """Threshold level set evolution with mask-area based convergence.

    The region grows into pixels whose intensity lies between a lower
    threshold, interpolated between ``intens10`` and ``intens40`` by the
    threshold selector, and ``intens98``. Curvature smooths the boundary.

    Convergence is judged from the history of mask areas: an event is
    counted whenever the area stays flat over two steps or oscillates
    (shrinks then grows, or grows then shrinks). The slice is stationary
    once more than ``stationary_max`` events have been counted.
    """

    GROWTH_RANGE_FACTOR = 0.0000003

    def __init__(
        self,
        slice_: Slice,
        thresholds: Optional[GlobalThresholds] = None,
        curvature_weight: float = 1.0,
        propagation_weight: float = 1.0,
        curvature_adjust_factor: float = 5.0,
        iterations_per_step: int = 1,
        threshold_selector: float = 0.5,
        stationary_max: int = 4,
        max_rms_error: float = 0.02,
        smoothing_sigma: float = 0.5,
    ) -> None:
        """Initialize the evolver.

        Args:
            slice_: Slice to evolve.
            thresholds: Global thresholds. If None, thresholds are calibrated
                from this slice alone.
            curvature_weight: Default curvature scaling.
            propagation_weight: Propagation scaling (positive grows into the
                threshold band).
            curvature_adjust_factor: Multiplier applied by ``adjust_curvature``.
            iterations_per_step: Filter iterations per ``step()`` call.
            threshold_selector: Position of the lower threshold between
                ``intens10`` (0.0) and ``intens40`` (1.0).
            stationary_max: Stationarity events tolerated before converging.
            max_rms_error: Filter convergence tolerance.
            smoothing_sigma: Gaussian sigma applied to the feature image.
        """
        if thresholds is None:
            logger.debug(f"No global thresholds for slice {slice_.index}, calibrating locally")
            thresholds = HistogramCalibrator().calibrate([slice_.image])

        super().__init__(slice_, thresholds, default_curvature=curvature_weight)
        self.propagation_weight = propagation_weight
        self.curvature_adjust_factor = curvature_adjust_factor
        self.iterations_per_step = max(1, int(iterations_per_step))
        self.threshold_selector = threshold_selector
        self.max_rms_error = max_rms_error
        self.smoothing_sigma = smoothing_sigma
        self.slice.stationary_threshold = stationary_max

        self._feature: Optional[sitk.Image] = None
        self._reset_history()

    @property
    def lower_threshold(self) -> float:
        t = self.thresholds
        return float(t.intens10 + self.threshold_selector * (t.intens40 - t.intens10))

    @property
    def upper_threshold(self) -> float:
        return float(self.thresholds.intens98)

    def _reset_history(self) -> None:
        self._last_area = -1
        self._last_last_area = -1
        self._stationary_counter = -1

    def _feature_image(self) -> sitk.Image:
        """Return the smoothed slice image, computed once per evolver."""
        if self._feature is not None:
            return self._feature

        image = sitk.GetImageFromArray(np.asarray(self.slice.image, dtype=np.float32))
        if self.smoothing_sigma > 0:
            try:
                image = sitk.SmoothingRecursiveGaussian(image, sigma=self.smoothing_sigma)
            except RuntimeError as e:
                # Recursive Gaussian needs at least 4 pixels per axis
                logger.debug(f"Smoothing skipped for slice {self.index}: {e}")
        self._feature = image
        return image

    def initialize_parameters(self) -> None:
        """Reset the iteration counter, curvature weight, and convergence history."""
        super().initialize_parameters()
        self._reset_history()

    def step(self) -> None:
        """Run ``iterations_per_step`` filter iterations from the current field.

        Raises:
            RuntimeError: If the slice has no field yet.
        """
        if self.phi is None:
            raise RuntimeError(f"Slice {self.index} has no field to evolve")

        self.slice.iteration += 1
        if self.thresholds.is_degenerate:
            # A uniform volume has no boundary to find
            self.set_phi_zero()
            return

        mask = PhiOperations.to_mask(self.phi)
        if not mask.any() or mask.all():
            # No zero level to move
            return

        # SimpleITK level sets are negative inside, with the front at 0
        initial = -(self.phi - PhiOperations.BOUNDARY_VALUE)
        initial = sitk.GetImageFromArray(initial.astype(np.float32))

        ls_filter = sitk.ThresholdSegmentationLevelSetImageFilter()
        ls_filter.SetLowerThreshold(self.lower_threshold)
        ls_filter.SetUpperThreshold(self.upper_threshold)
        ls_filter.SetPropagationScaling(float(self.propagation_weight))
        ls_filter.SetCurvatureScaling(float(self.slice.curvature_weight))
        ls_filter.SetMaximumRMSError(float(self.max_rms_error))
        ls_filter.SetNumberOfIterations(self.iterations_per_step)

        level_set = sitk.GetArrayFromImage(ls_filter.Execute(initial, self._feature_image()))

        # Keep the sub-pixel front position so short steps accumulate
        self.phi = (-level_set + PhiOperations.BOUNDARY_VALUE).astype(np.float64)
        logger.debug(
            f"Slice {self.index} iteration {self.slice.iteration}: "
            f"area={self.mask_area()}, rms={ls_filter.GetRMSChange():.4f}"
        )

    def is_stationary(self) -> bool:
        """Return True once the mask area has stopped changing."""
        if self.phi is None:
            return True

        area = self.mask_area()
        if self._last_last_area < 0:
            self._last_last_area = area
            return False
        if self._last_area < 0:
            self._last_area = area
            return False

        growth_range = int(self._last_last_area * self.GROWTH_RANGE_FACTOR)
        previous_growth = self._last_area - self._last_last_area
        growth = area - self._last_area

        if previous_growth == growth_range and growth == growth_range:
            self._stationary_counter += 1
        elif previous_growth < 0 and growth > 0:
            self._stationary_counter += 1
        elif previous_growth > 0 and growth < 0:
            self._stationary_counter += 1

        self._last_last_area = self._last_area
        self._last_area = area

        return self._stationary_counter > self.slice.stationary_threshold

    def adjust_curvature(self) -> None:
        """Multiply the curvature weight and restart convergence counting."""
        self.slice.curvature_weight *= self.curvature_adjust_factor
        self._stationary_counter = -1
        logger.debug(
            f"Slice {self.index} curvature weight raised to {self.slice.curvature_weight:.2f}"
        )
