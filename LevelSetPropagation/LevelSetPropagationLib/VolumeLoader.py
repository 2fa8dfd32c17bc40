"""Load a slice stack from disk with SimpleITK.

Supports any 3D image SimpleITK can read (NRRD, NIfTI, MetaImage, ...),
a directory holding a DICOM series, or a directory of 2D images that are
stacked in file name order.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import numpy as np
import SimpleITK as sitk
from VolumeData import MalformedVolumeError, VolumeStack

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff")

# Upper bound of the integer range fractional or very wide volumes are mapped to
RESCALED_MAX_INTENSITY = 4095

# Widest whole-number range kept as is
MAX_INTEGER_INTENSITY = 65535


def _read_directory(directory: Path) -> tuple[sitk.Image, bool]:
    """Read a directory as a DICOM series, else as sorted 2D images.

    Returns:
        Tuple of (image, has_spacing). ``has_spacing`` is False for plain 2D
        image stacks, whose z spacing carries no information.
    """
    reader = sitk.ImageSeriesReader()
    series_files = reader.GetGDCMSeriesFileNames(str(directory))
    if series_files:
        reader.SetFileNames(series_files)
        return reader.Execute(), True

    files = sorted(p for p in directory.iterdir() if p.suffix.lower() in IMAGE_SUFFIXES)
    if not files:
        raise FileNotFoundError(f"No DICOM series or 2D images found in {directory}")
    reader.SetFileNames([str(p) for p in files])
    return reader.Execute(), False


def _needs_rescale(array: np.ndarray) -> bool:
    """Return True if ``array`` cannot be binned one integer intensity per bin."""
    finite = array[np.isfinite(array)] if np.issubdtype(array.dtype, np.floating) else array
    if finite.size == 0:
        return False
    if finite.max() > MAX_INTEGER_INTENSITY:
        return True
    return bool(np.issubdtype(array.dtype, np.floating) and np.any(finite != np.floor(finite)))


def load_volume(
    path: Path | str,
    inter_slice_distance: Optional[float] = None,
    default_inter_slice_distance: float = 3.0,
) -> VolumeStack:
    """Load a volume into a VolumeStack.

    Args:
        path: 3D image file, DICOM series directory, or directory of 2D images.
        inter_slice_distance: Overrides the spacing read from the file. When
            None, the z spacing is used.
        default_inter_slice_distance: Spacing for plain 2D image stacks,
            which carry no z spacing.

    Intensities that are fractional, such as a float volume normalized to
    [0, 1], or wider than 16 bits are rescaled linearly to
    ``[0, RESCALED_MAX_INTENSITY]`` so that histogram calibration sees a
    usable integer range.

    Returns:
        VolumeStack ordered by slice.

    Raises:
        FileNotFoundError: If ``path`` does not exist or holds no images.
        MalformedVolumeError: If the image is not 2D or 3D.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Volume not found: {path}")

    if path.is_dir():
        image, has_spacing = _read_directory(path)
    else:
        image, has_spacing = sitk.ReadImage(str(path)), True

    components = image.GetNumberOfComponentsPerPixel()
    if components > 1:
        logger.info(f"{path} has {components} components per pixel, using the first")
        image = sitk.VectorIndexSelectionCast(image, 0)

    dimension = image.GetDimension()
    if dimension not in (2, 3):
        raise MalformedVolumeError(f"Expected a 2D or 3D image, got {dimension}D: {path}")

    array = sitk.GetArrayFromImage(image)
    if _needs_rescale(array):
        logger.info(f"Rescaling {path} intensities to [0, {RESCALED_MAX_INTENSITY}]")
        image = sitk.Cast(
            sitk.RescaleIntensity(image, 0, RESCALED_MAX_INTENSITY), sitk.sitkUInt16
        )
        array = sitk.GetArrayFromImage(image)
    array = array.astype(np.float64)
    if dimension == 2:
        array = array[np.newaxis, ...]

    if inter_slice_distance is None:
        if has_spacing and dimension == 3:
            inter_slice_distance = float(image.GetSpacing()[2])
        else:
            inter_slice_distance = default_inter_slice_distance

    logger.info(
        f"Loaded {path}: {array.shape[0]} slices of {array.shape[1]}x{array.shape[2]}, "
        f"inter-slice distance {inter_slice_distance:.2f}"
    )
    return VolumeStack.from_array(array, inter_slice_distance)
