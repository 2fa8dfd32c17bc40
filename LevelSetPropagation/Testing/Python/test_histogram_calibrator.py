"""Tests for HistogramCalibrator - global percentile thresholds.

These tests verify the cumulative histogram percentiles and the derived
10% and 40% thresholds shared by every slice.
"""

import logging
import sys
import unittest
from pathlib import Path

import numpy as np

# Add parent directory to path for imports
_THIS_DIR = Path(__file__).parent
_LIB_DIR = _THIS_DIR.parent.parent / "LevelSetPropagationLib"
if str(_LIB_DIR) not in sys.path:
    sys.path.insert(0, str(_LIB_DIR))

from HistogramCalibrator import GlobalThresholds, HistogramCalibrator  # noqa: E402
from test_fixtures import (  # noqa: E402
    create_disk_stack,
    create_gradient_stack,
    create_uniform_stack,
)


class TestHistogramCalibrator(unittest.TestCase):
    """Tests for HistogramCalibrator.calibrate."""

    def setUp(self):
        self.calibrator = HistogramCalibrator()

    def test_evenly_spread_intensities(self):
        """Each of 0..99 once: 2% is reached after 3 values, 98% after 99."""
        image = np.arange(100).reshape(10, 10)
        thresholds = self.calibrator.calibrate([image])

        self.assertEqual(thresholds.intens2, 2)
        self.assertEqual(thresholds.intens98, 98)
        self.assertEqual(thresholds.intens10, 12)
        self.assertEqual(thresholds.intens40, 40)
        self.assertEqual(thresholds.max_intensity, 99)

    def test_spread_over_several_slices(self):
        """Splitting the same pixels across slices should not change the result."""
        image = np.arange(100).reshape(10, 10)
        split = [image[:5], image[5:]]
        self.assertEqual(
            self.calibrator.calibrate(split).as_tuple(),
            self.calibrator.calibrate([image]).as_tuple(),
        )

    def test_gradient_volume(self):
        """A column ramp over 0..99 matches the evenly spread case."""
        volume = create_gradient_stack(num_slices=10, size=(64, 100), max_intensity=99.0)
        thresholds = self.calibrator.calibrate(list(volume))
        self.assertEqual(thresholds.as_tuple(), (2.0, 12.0, 40.0, 98.0))

    def test_derived_thresholds_round_half_up(self):
        """0.1 * 5 = 0.5 rounds up to 1."""
        values = np.array([0] * 3 + [1] * 95 + [5] * 2)
        thresholds = self.calibrator.calibrate([values.reshape(10, 10)])

        self.assertEqual(thresholds.intens2, 0)
        self.assertEqual(thresholds.intens98, 5)
        self.assertEqual(thresholds.intens10, 1)
        self.assertEqual(thresholds.intens40, 2)

    def test_idempotent(self):
        """Calibrating the same volume twice gives identical thresholds."""
        volume, _ = create_disk_stack(num_slices=6, size=(32, 32), radius=10.0, noise_std=5.0)
        first = self.calibrator.calibrate(list(volume))
        second = self.calibrator.calibrate(list(volume))
        self.assertEqual(first.as_tuple(), second.as_tuple())

    def test_all_zero_volume(self):
        """A uniform zero volume collapses every percentile to 0 without error."""
        volume = create_uniform_stack(num_slices=21, size=(16, 16), intensity=0.0)
        with self.assertLogs("HistogramCalibrator", level=logging.WARNING):
            thresholds = self.calibrator.calibrate(list(volume))

        self.assertEqual(thresholds.as_tuple(), (0.0, 0.0, 0.0, 0.0))
        self.assertTrue(thresholds.is_degenerate)
        self.assertEqual(thresholds.intensity_range, 0.0)

    def test_uniform_nonzero_volume(self):
        volume = create_uniform_stack(num_slices=3, size=(8, 8), intensity=100.0)
        thresholds = self.calibrator.calibrate(list(volume))
        self.assertEqual(thresholds.as_tuple(), (100.0, 100.0, 100.0, 100.0))

    def test_disk_stack(self):
        """Background fills the low percentiles, the disk the high ones."""
        volume, _ = create_disk_stack(num_slices=4, size=(64, 64), radius=20.0)
        thresholds = self.calibrator.calibrate(list(volume))
        self.assertEqual(thresholds.intens2, 20)
        self.assertEqual(thresholds.intens98, 200)
        self.assertEqual(thresholds.intens10, 38)
        self.assertEqual(thresholds.intens40, 92)

    def test_negative_and_nan_values_count_as_zero(self):
        image = np.array([[-5.0, np.nan], [0.0, 10.0]])
        thresholds = self.calibrator.calibrate([image])
        self.assertEqual(thresholds.intens2, 0)
        self.assertEqual(thresholds.max_intensity, 10)

    def test_integer_images(self):
        image = np.arange(100, dtype=np.uint16).reshape(10, 10)
        self.assertEqual(self.calibrator.calibrate([image]).intens98, 98)

    def test_empty_input_raises(self):
        with self.assertRaises(ValueError):
            self.calibrator.calibrate([])

    def test_intensity_beyond_bin_limit_raises(self):
        """A huge maximum would need one bin per unit; refuse instead of allocating."""
        image = np.array([[0.0, 1.0], [2.0, 1e12]])
        with self.assertRaises(ValueError):
            self.calibrator.calibrate([image])

    def test_custom_bin_limit(self):
        calibrator = HistogramCalibrator(max_bins=100)
        self.assertEqual(calibrator.calibrate([np.arange(100).reshape(10, 10)]).intens98, 98)
        with self.assertRaises(ValueError):
            calibrator.calibrate([np.arange(101).reshape(1, 101)])

    def test_custom_fractions(self):
        calibrator = HistogramCalibrator(low_fraction=0.1, high_fraction=0.9)
        thresholds = calibrator.calibrate([np.arange(100).reshape(10, 10)])
        self.assertEqual(thresholds.intens2, 10)
        self.assertEqual(thresholds.intens98, 90)


class TestGlobalThresholds(unittest.TestCase):
    """Tests for the GlobalThresholds dataclass."""

    def test_immutable(self):
        thresholds = GlobalThresholds(2.0, 12.0, 40.0, 98.0)
        with self.assertRaises(AttributeError):
            thresholds.intens2 = 5.0

    def test_to_dict(self):
        thresholds = GlobalThresholds(2.0, 12.0, 40.0, 98.0, max_intensity=99.0)
        self.assertEqual(
            thresholds.to_dict(),
            {
                "intens2": 2.0,
                "intens10": 12.0,
                "intens40": 40.0,
                "intens98": 98.0,
                "max_intensity": 99.0,
            },
        )


if __name__ == "__main__":
    unittest.main()
