"""Write committed slice masks to disk as PNG images."""

import logging
from pathlib import Path
from typing import Union

import numpy as np
import PhiOperations
import SimpleITK as sitk
from VolumeData import CommittedResult

logger = logging.getLogger(__name__)

MASK_VALUE = 255


class MaskWriter:
    """Save one binary mask image per committed slice.

    Files are named ``<slice_index + 1>.png`` so that the first slice is
    ``1.png``.
    """

    def __init__(self, output_dir: Union[str, Path], fill_holes: bool = True):
        self.output_dir = Path(output_dir)
        self.fill_holes = fill_holes

    def mask_image(self, result: CommittedResult) -> np.ndarray:
        """Return the uint8 mask (0 outside, 255 inside) of a committed result."""
        mask = PhiOperations.to_mask(result.phi).astype(np.uint8)
        if self.fill_holes and mask.any():
            filled = sitk.BinaryFillhole(
                sitk.GetImageFromArray(mask), fullyConnected=False, foregroundValue=1
            )
            mask = sitk.GetArrayFromImage(filled).astype(np.uint8)
        return mask * MASK_VALUE

    def path_for(self, slice_index: int) -> Path:
        return self.output_dir / f"{slice_index + 1}.png"

    def save_mask(self, result: CommittedResult) -> Path:
        """Write the mask of ``result`` and return the file path."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(result.slice_index)
        sitk.WriteImage(sitk.GetImageFromArray(self.mask_image(result)), str(path))
        logger.debug(f"Saved mask for slice {result.slice_index} to {path}")
        return path
