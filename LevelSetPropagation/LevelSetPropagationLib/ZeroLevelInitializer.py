"""Initial contour for the center slice.

The center slice has no neighbor to copy from, so its field starts as a
circle placed inside the head. The head is located from the bright pixels
of the slice (above 80% of the calibrated intensity range).
"""

import logging
import math
from typing import Optional

import numpy as np
import PhiOperations
from HistogramCalibrator import GlobalThresholds

logger = logging.getLogger(__name__)


class ZeroLevelInitializer:
    """Place a circular seed contour inside the head.

    Attributes:
        radius: Preferred circle radius in pixels.
        center_offset_y: Rows added to the estimated center (negative moves up).
        min_group: Consecutive rows/columns with head pixels needed to accept
            an edge of the head; shorter runs are treated as noise.
    """

    HEAD_FRACTION = 0.8

    def __init__(self, radius: float = 70.0, center_offset_y: int = -30, min_group: int = 5):
        self.radius = radius
        self.center_offset_y = center_offset_y
        self.min_group = max(1, int(min_group))

    def head_mask(self, image: np.ndarray, thresholds: GlobalThresholds) -> np.ndarray:
        """Return the pixels brighter than 80% of the intensity range."""
        level = thresholds.intens2 + self.HEAD_FRACTION * thresholds.intensity_range
        return np.asarray(image) > level

    def _first_run(self, flags: np.ndarray) -> Optional[int]:
        """Return the edge of the first run of ``min_group`` set flags, or None."""
        counter = 0
        half = math.floor(self.min_group / 2 + 0.5)
        for position, flag in enumerate(flags):
            counter = counter + 1 if flag else 0
            if counter >= self.min_group:
                return position - half
        return None

    def find_center(
        self, image: np.ndarray, thresholds: GlobalThresholds
    ) -> tuple[float, float, float]:
        """Estimate the seed circle.

        Args:
            image: 2D intensity grid of the center slice.
            thresholds: Calibrated global thresholds.

        Returns:
            Tuple of (center_row, center_col, radius).
        """
        image = np.asarray(image)
        rows, cols = image.shape
        mask = self.head_mask(image, thresholds)

        row_flags = mask.any(axis=1)
        col_flags = mask.any(axis=0)
        north = self._first_run(row_flags)
        south = self._first_run(row_flags[::-1])
        west = self._first_run(col_flags)
        east = self._first_run(col_flags[::-1])

        if None in (north, south, west, east):
            radius = min(self.radius, min(rows, cols) / 4.0)
            logger.info(
                f"No head found in seed slice, using grid center with radius {radius:.1f}"
            )
            return (rows / 2.0, cols / 2.0, radius)

        south = rows - 1 - south
        east = cols - 1 - east

        diameter = max(0, east - west)
        center_col = math.floor((west + east) / 2 + 0.5)
        center_row = math.floor(north + diameter // 3 + 0.5) + self.center_offset_y

        center_row = float(np.clip(center_row, 0, rows - 1))
        center_col = float(np.clip(center_col, 0, cols - 1))

        # Keep the circle inside the head box
        fit = min(
            center_row - north,
            south - center_row,
            center_col - west,
            east - center_col,
        )
        radius = max(1.0, min(self.radius, float(fit)))

        logger.debug(
            f"Head extents N={north} S={south} W={west} E={east}; "
            f"seed center=({center_row:.0f}, {center_col:.0f}), radius={radius:.1f}"
        )
        return (center_row, center_col, radius)

    def initial_phi(self, image: np.ndarray, thresholds: GlobalThresholds) -> np.ndarray:
        """Return the seed field ``radius - distance`` for the center slice."""
        image = np.asarray(image)
        center_row, center_col, radius = self.find_center(image, thresholds)
        return PhiOperations.circle_phi(image.shape, center_row, center_col, radius)
