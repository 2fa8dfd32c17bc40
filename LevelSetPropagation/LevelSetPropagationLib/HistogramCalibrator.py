"""Histogram calibration of global intensity thresholds.

This module scans every slice of a volume once and derives the cumulative
histogram percentiles that seed the thresholds of every slice's evolver.
"""

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import numpy as np

logger = logging.getLogger(__name__)

# One histogram bin per integer intensity; 16-bit data fits.
MAX_HISTOGRAM_BINS = 1 << 16


@dataclass(frozen=True)
class GlobalThresholds:
    """Intensity percentiles computed once from the whole volume.

    Immutable after calibration and shared read-only by every slice.
    """

    intens2: float
    """Smallest intensity whose cumulative fraction exceeds 2%."""

    intens10: float
    """``round(0.1 * (intens98 - intens2) + intens2)``."""

    intens40: float
    """``round(0.4 * (intens98 - intens2) + intens2)``."""

    intens98: float
    """Smallest intensity whose cumulative fraction exceeds 98%."""

    max_intensity: float = 0.0
    """Maximum intensity found in the volume."""

    @property
    def intensity_range(self) -> float:
        """Return the spread between the 98th and 2nd percentiles."""
        return self.intens98 - self.intens2

    @property
    def is_degenerate(self) -> bool:
        """Return True when all percentiles collapsed to one value."""
        return self.intens2 == self.intens98

    def as_tuple(self) -> tuple[float, float, float, float]:
        """Return ``(intens2, intens10, intens40, intens98)``."""
        return (self.intens2, self.intens10, self.intens40, self.intens98)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "intens2": self.intens2,
            "intens10": self.intens10,
            "intens40": self.intens40,
            "intens98": self.intens98,
            "max_intensity": self.max_intensity,
        }


class HistogramCalibrator:
    """Derive global intensity thresholds from a cumulative histogram.

    Intensities are binned as non-negative integers over ``[0, max]``;
    fractional values are truncated and negative values count in bin 0.
    Volumes with a larger or fractional intensity range should be rescaled
    first, as VolumeLoader.load_volume does.
    """

    def __init__(
        self,
        low_fraction: float = 0.02,
        high_fraction: float = 0.98,
        max_bins: int = MAX_HISTOGRAM_BINS,
    ):
        """Initialize the calibrator.

        Args:
            low_fraction: Cumulative fraction defining ``intens2``.
            high_fraction: Cumulative fraction defining ``intens98``.
            max_bins: Largest histogram the calibrator will allocate.
        """
        self.low_fraction = low_fraction
        self.high_fraction = high_fraction
        self.max_bins = max_bins

    def calibrate(self, images: Iterable[np.ndarray]) -> GlobalThresholds:
        """Compute the four global percentiles.

        Args:
            images: Every slice's intensity grid, in any order.

        Returns:
            GlobalThresholds for the whole volume.

        Raises:
            ValueError: If no pixels were supplied or the maximum intensity
                needs more than ``max_bins`` bins.
        """
        arrays = [self._to_bins(image) for image in images]
        total = sum(int(a.size) for a in arrays)
        if total == 0:
            raise ValueError("Cannot calibrate thresholds from an empty volume")

        max_intensity = max(int(a.max()) for a in arrays if a.size > 0)
        if max_intensity >= self.max_bins:
            raise ValueError(
                f"Maximum intensity {max_intensity} exceeds {self.max_bins} histogram bins; "
                "rescale the volume first"
            )

        histogram = np.zeros(max_intensity + 1, dtype=np.int64)
        for array in arrays:
            histogram += np.bincount(array.ravel(), minlength=max_intensity + 1)

        cumulative = np.cumsum(histogram) / float(total)
        intens2 = float(self._first_above(cumulative, self.low_fraction))
        intens98 = float(self._first_above(cumulative, self.high_fraction))

        # round() halves-to-even; the thresholds round halves up
        intens10 = float(math.floor(0.1 * (intens98 - intens2) + intens2 + 0.5))
        intens40 = float(math.floor(0.4 * (intens98 - intens2) + intens2 + 0.5))

        thresholds = GlobalThresholds(
            intens2=intens2,
            intens10=intens10,
            intens40=intens40,
            intens98=intens98,
            max_intensity=float(max_intensity),
        )

        if thresholds.is_degenerate:
            logger.warning(
                f"Volume is uniform: all percentiles collapsed to {intens2:.0f}"
            )
        logger.info(
            f"Calibrated thresholds: intens2={intens2:.0f}, intens10={intens10:.0f}, "
            f"intens40={intens40:.0f}, intens98={intens98:.0f} (max={max_intensity})"
        )
        return thresholds

    @staticmethod
    def _to_bins(image: np.ndarray) -> np.ndarray:
        array = np.asarray(image)
        if np.issubdtype(array.dtype, np.floating):
            array = np.nan_to_num(array, nan=0.0)
        return np.clip(array, 0, None).astype(np.int64)

    @staticmethod
    def _first_above(cumulative: np.ndarray, fraction: float) -> int:
        """Return the smallest bin whose cumulative fraction exceeds ``fraction``."""
        above = cumulative > fraction
        if not above.any():
            return int(len(cumulative) - 1)
        return int(np.argmax(above))
