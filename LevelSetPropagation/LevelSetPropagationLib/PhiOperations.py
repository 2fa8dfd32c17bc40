"""Measurements and transforms on level set fields.

A pixel is inside the segmented region iff ``phi >= BOUNDARY_VALUE``.
Every function in this module, and every caller in the pipeline, uses
that single rule to turn a field into a mask.
"""

import logging

import numpy as np
from scipy.ndimage import distance_transform_edt

logger = logging.getLogger(__name__)

BOUNDARY_VALUE = -0.5
"""Cut-off value of phi separating inside (>=) from outside (<)."""

EMPTY_PHI_VALUE = -1.0
"""Value written to every pixel of an empty field."""


def to_mask(phi: np.ndarray) -> np.ndarray:
    """Convert a level set field to a boolean mask.

    Args:
        phi: 2D level set field.

    Returns:
        Boolean array, True inside the region.
    """
    return np.asarray(phi) >= BOUNDARY_VALUE


def mask_area(phi: np.ndarray) -> int:
    """Count the pixels inside the region."""
    return int(np.count_nonzero(to_mask(phi)))


def contour_length(phi: np.ndarray) -> int:
    """Count the pixels on the boundary of the region.

    A pixel is counted when it is inside and at least one of its four
    neighbours is outside. The outermost ring of the grid is never counted.

    Args:
        phi: 2D level set field.

    Returns:
        Number of boundary pixels.
    """
    mask = to_mask(phi).astype(np.int32)
    if mask.shape[0] < 3 or mask.shape[1] < 3:
        return 0

    center = mask[1:-1, 1:-1]
    laplacian = (
        4 * center
        - mask[:-2, 1:-1]
        - mask[2:, 1:-1]
        - mask[1:-1, :-2]
        - mask[1:-1, 2:]
    )
    return int(np.count_nonzero(laplacian > 0))


def jaccard(reference_phi: np.ndarray, candidate_phi: np.ndarray) -> float:
    """Compute the Jaccard coefficient TP / (TP + FP + FN) of two fields.

    Args:
        reference_phi: Field treated as ground truth (the neighbor).
        candidate_phi: Field being judged.

    Returns:
        Jaccard coefficient in [0, 1]. Two empty masks count as identical (1.0).

    Raises:
        ValueError: If the grids differ in shape.
    """
    reference = to_mask(reference_phi)
    candidate = to_mask(candidate_phi)
    if reference.shape != candidate.shape:
        raise ValueError(
            f"Cannot compare fields of shape {reference.shape} and {candidate.shape}"
        )

    tp = int(np.count_nonzero(reference & candidate))
    fp = int(np.count_nonzero(reference & ~candidate))
    fn = int(np.count_nonzero(~reference & candidate))

    union = tp + fp + fn
    if union == 0:
        return 1.0
    return tp / union


def empty_phi(shape: tuple[int, int]) -> np.ndarray:
    """Return a field with no pixel inside the region."""
    return np.full(shape, EMPTY_PHI_VALUE, dtype=np.float64)


def reinitialize(phi: np.ndarray) -> np.ndarray:
    """Rebuild a signed distance field that keeps the same mask.

    Inside pixels get their distance to the nearest outside pixel minus one,
    so pixels on the boundary sit at 0. Outside pixels get the negated
    distance to the nearest inside pixel.

    Args:
        phi: 2D level set field.

    Returns:
        New float64 field with ``to_mask(result) == to_mask(phi)``.
    """
    mask = to_mask(phi)
    if not mask.any():
        return empty_phi(mask.shape)
    if mask.all():
        return np.full(mask.shape, float(max(mask.shape)), dtype=np.float64)

    inside = distance_transform_edt(mask) - 1.0
    outside = distance_transform_edt(~mask)
    return np.where(mask, inside, -outside).astype(np.float64)


def circle_phi(
    shape: tuple[int, int], center_row: float, center_col: float, radius: float
) -> np.ndarray:
    """Create a field whose zero level is a circle.

    Args:
        shape: (rows, columns) of the grid.
        center_row: Row coordinate of the circle center.
        center_col: Column coordinate of the circle center.
        radius: Circle radius in pixels.

    Returns:
        ``radius - distance`` at every pixel (positive inside).
    """
    rows, cols = np.ogrid[: shape[0], : shape[1]]
    distance = np.sqrt((rows - center_row) ** 2 + (cols - center_col) ** 2)
    return (radius - distance).astype(np.float64)
