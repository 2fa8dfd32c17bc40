"""Pytest configuration and fixtures for LevelSetPropagation tests."""

import os
import sys

import numpy as np
import pytest

# Add library path for imports
_THIS_DIR = os.path.dirname(os.path.abspath(__file__))
_LIB_DIR = os.path.join(os.path.dirname(os.path.dirname(_THIS_DIR)), "LevelSetPropagationLib")
if _LIB_DIR not in sys.path:
    sys.path.insert(0, _LIB_DIR)

# Try to import SimpleITK (the numpy-only tests run without it)
try:
    import SimpleITK  # noqa: F401

    HAS_SIMPLEITK = True
except ImportError:
    HAS_SIMPLEITK = False


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "requires_sitk: mark test as requiring SimpleITK")


# Skip decorators
requires_sitk = pytest.mark.skipif(not HAS_SIMPLEITK, reason="SimpleITK not available")


@pytest.fixture
def disk_volume():
    """20 slices of 128x128, each with the same bright disk of about 5000 pixels."""
    from test_fixtures import create_disk_stack

    volume, _ = create_disk_stack(num_slices=20, size=(128, 128), radius=40.0)
    return volume


@pytest.fixture
def zero_volume():
    """21 slices of 64x64 with every intensity equal to 0."""
    from test_fixtures import create_uniform_stack

    return create_uniform_stack(num_slices=21, size=(64, 64), intensity=0.0)


@pytest.fixture
def disk_phi():
    """A 64x64 field whose inside is a disk of radius 15 centered on the grid."""
    from test_fixtures import phi_from_mask, disk_mask

    return phi_from_mask(disk_mask((64, 64), radius=15.0))


@pytest.fixture
def rng():
    """Reproducible random generator."""
    return np.random.default_rng(42)
