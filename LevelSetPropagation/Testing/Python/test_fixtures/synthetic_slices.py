"""Synthetic slice stacks for testing propagation.

Shapes follow numpy ordering: stacks are (slices, rows, columns).
"""

from typing import Optional, Tuple

import numpy as np


def disk_mask(
    shape: Tuple[int, int],
    radius: float,
    center: Optional[Tuple[float, float]] = None,
) -> np.ndarray:
    """
    Create a boolean disk mask.

    Args:
        shape: (rows, columns) of the grid.
        radius: Disk radius in pixels.
        center: (row, column) of the center; defaults to the grid center.

    Returns:
        Boolean array, True inside the disk.
    """
    if center is None:
        center = ((shape[0] - 1) / 2.0, (shape[1] - 1) / 2.0)
    rows, cols = np.ogrid[: shape[0], : shape[1]]
    distance = np.sqrt((rows - center[0]) ** 2 + (cols - center[1]) ** 2)
    return distance <= radius


def phi_from_mask(mask: np.ndarray) -> np.ndarray:
    """Return a field that is 1.0 inside ``mask`` and -1.0 outside."""
    return np.where(mask, 1.0, -1.0)


def create_disk_stack(
    num_slices: int = 20,
    size: Tuple[int, int] = (128, 128),
    radius: float = 40.0,
    intensity: float = 200.0,
    background: float = 20.0,
    noise_std: float = 0.0,
    corner_patch: int = 0,
    corner_intensity: float = 250.0,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Create a stack where every slice holds the same bright disk.

    Args:
        num_slices: Number of slices.
        size: (rows, columns) of each slice.
        radius: Disk radius in pixels.
        intensity: Disk intensity.
        background: Background intensity.
        noise_std: Standard deviation of Gaussian noise (0 for no noise).
        corner_patch: Side of a bright square in the top-left corner. When it
            covers more than 2% of the slice, the disk intensity falls below
            the 98th percentile and lies inside the level set threshold band.
        corner_intensity: Intensity of the corner square.

    Returns:
        Tuple of (volume, mask): float32 (N, rows, columns) and the 2D disk mask.
    """
    mask = disk_mask(size, radius)
    image = np.where(mask, intensity, background).astype(np.float32)
    if corner_patch > 0:
        image[:corner_patch, :corner_patch] = corner_intensity
    volume = np.repeat(image[np.newaxis, ...], num_slices, axis=0)

    if noise_std > 0:
        rng = np.random.default_rng(42)
        volume = volume + rng.normal(0, noise_std, volume.shape).astype(np.float32)
        volume = np.clip(volume, 0, None)

    return volume, mask


def create_uniform_stack(
    num_slices: int = 21,
    size: Tuple[int, int] = (64, 64),
    intensity: float = 0.0,
) -> np.ndarray:
    """Create a stack with one intensity everywhere."""
    return np.full((num_slices, size[0], size[1]), intensity, dtype=np.float32)


def create_gradient_stack(
    num_slices: int = 10,
    size: Tuple[int, int] = (64, 64),
    max_intensity: float = 99.0,
) -> np.ndarray:
    """
    Create a stack whose intensity rises linearly along the columns.

    Every integer intensity 0..max_intensity appears in equal proportion
    when ``size[1] == max_intensity + 1``.
    """
    gradient = np.linspace(0, max_intensity, size[1], dtype=np.float32)
    slice_ = np.broadcast_to(gradient[np.newaxis, :], size)
    return np.repeat(slice_[np.newaxis, ...], num_slices, axis=0).copy()
