"""LevelSetPropagationLib - Slice-wise level set brain segmentation.

This library segments a stack of 2D slices by evolving a level set on the
center slice and propagating the committed contour outward, slice by slice,
with plausibility checks, retries, and rollback.
"""

# Note: modules are imported by bare name with this directory on sys.path
# (see scripts/run_propagation.py and Testing/Python/conftest.py), or as
# top-level modules after `pip install -e .`.

__all__ = [
    "VolumeData",
    "PhiOperations",
    "HistogramCalibrator",
    "SliceEvolver",
    "LevelSetEvolver",
    "ZeroLevelInitializer",
    "AcceptanceEvaluator",
    "RetryPolicy",
    "PropagationConfig",
    "PropagationController",
    "PropagationWorker",
    "MaskWriter",
    "VolumeLoader",
]
