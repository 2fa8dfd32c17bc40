"""Tests for the SliceEvolver contract shared by every evolver."""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add parent directory to path for imports
_THIS_DIR = Path(__file__).parent
_LIB_DIR = _THIS_DIR.parent.parent / "LevelSetPropagationLib"
if str(_LIB_DIR) not in sys.path:
    sys.path.insert(0, str(_LIB_DIR))

import PhiOperations  # noqa: E402
from SliceEvolver import SliceEvolver  # noqa: E402
from test_fixtures import ScriptedEvolver, disk_mask, phi_from_mask  # noqa: E402
from VolumeData import Slice, SliceState  # noqa: E402


@pytest.fixture
def evolver():
    return ScriptedEvolver(Slice(index=5, image=np.zeros((40, 40))))


class TestSeeding:
    def test_abstract(self):
        with pytest.raises(TypeError):
            SliceEvolver(Slice(index=0, image=np.zeros((4, 4))))

    def test_initialize_from_neighbor_copies(self, evolver):
        neighbor = phi_from_mask(disk_mask((40, 40), radius=10.0))
        evolver.initialize_from_neighbor(neighbor)
        neighbor[:] = -1.0

        assert evolver.phi is evolver.slice.phi
        assert evolver.mask_area() > 0

    def test_initialize_from_neighbor_shape_mismatch(self, evolver):
        with pytest.raises(ValueError):
            evolver.initialize_from_neighbor(np.zeros((40, 41)))

    def test_initialize_parameters(self, evolver):
        evolver.slice.iteration = 12
        evolver.slice.curvature_weight = 25.0
        evolver.initialize_parameters()
        assert evolver.iteration == 0
        assert evolver.slice.curvature_weight == 1.0

    def test_initialize_parameters_keeps_frozen(self, evolver):
        """Only observers clear the frozen flag."""
        evolver.slice.freeze()
        evolver.initialize_parameters()
        assert evolver.is_frozen()


class TestShrinkSeed:
    def test_shrinks_by_pixels(self, evolver):
        phi = np.full((40, 40), -1.0)
        phi[10:30, 10:30] = 1.0
        shrunk = evolver.shrink_seed(phi, 3)

        mask = PhiOperations.to_mask(shrunk)
        assert mask[13:27, 13:27].all()
        assert not mask[12, 20]
        assert PhiOperations.mask_area(shrunk) == 14 * 14

    def test_leaves_input_untouched(self, evolver):
        phi = phi_from_mask(disk_mask((40, 40), radius=10.0))
        original = phi.copy()
        evolver.shrink_seed(phi, 2)
        np.testing.assert_array_equal(phi, original)

    def test_zero_and_negative_are_noop(self, evolver):
        phi = phi_from_mask(disk_mask((40, 40), radius=10.0))
        for amount in (0, -2):
            np.testing.assert_array_equal(
                PhiOperations.to_mask(evolver.shrink_seed(phi, amount)),
                PhiOperations.to_mask(phi),
            )

    def test_shrinks_to_empty(self, evolver):
        phi = phi_from_mask(disk_mask((40, 40), radius=2.0))
        assert PhiOperations.mask_area(evolver.shrink_seed(phi, 5)) == 0


class TestMeasurementsAndCommit:
    def test_measurements_default_to_current_phi(self, evolver):
        phi = np.full((40, 40), -1.0)
        phi[5:9, 5:9] = 1.0
        evolver.phi = phi
        assert evolver.mask_area() == 16
        assert evolver.contour_length() == 12
        assert evolver.mask_area(np.ones((40, 40))) == 1600

    def test_measurements_without_phi(self, evolver):
        assert evolver.mask_area() == 0
        assert evolver.contour_length() == 0

    def test_set_phi_zero(self, evolver):
        evolver.phi = np.ones((40, 40))
        evolver.set_phi_zero()
        assert evolver.mask_area() == 0
        assert evolver.phi.shape == (40, 40)

    def test_commit_once(self, evolver):
        evolver.phi = np.ones((40, 40))
        result = evolver.commit()

        assert result.state == SliceState.ACCEPTED
        assert result.slice_index == 5
        assert evolver.committed_result is result
        assert evolver.slice.committed
        with pytest.raises(RuntimeError):
            evolver.commit()

    def test_commit_without_phi(self, evolver):
        with pytest.raises(RuntimeError):
            evolver.commit()

    def test_committed_result_survives_later_changes(self, evolver):
        evolver.phi = np.ones((40, 40))
        result = evolver.commit()
        evolver.set_phi_zero()
        assert PhiOperations.mask_area(result.phi) == 1600
