#!/usr/bin/env python
"""Segment a brain volume by slice-wise level set propagation.

Loads a volume, calibrates global thresholds, evolves the center slice,
propagates the contour to every other slice, and writes one mask image
per slice.

Example:
    python scripts/run_propagation.py data/t1.nrrd --output masks/
    python scripts/run_propagation.py data/slices/ --config configs/t1.yaml --spacing 3
    python scripts/run_propagation.py data/t1.nii.gz --summary summary.json --verbose
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path

logger = logging.getLogger("propagation")


def get_project_root() -> Path:
    """Get the project root directory.

    The project root contains LevelSetPropagation/.
    """
    # scripts/run_propagation.py -> parent is scripts/ -> parent is project root
    return Path(__file__).resolve().parent.parent


PROJECT_ROOT = get_project_root()

lib_path = PROJECT_ROOT / "LevelSetPropagation" / "LevelSetPropagationLib"
if str(lib_path) not in sys.path:
    sys.path.insert(0, str(lib_path))

from PropagationConfig import PropagationConfig  # noqa: E402
from PropagationController import ProgressEvent, PropagationController  # noqa: E402
from PropagationWorker import PropagationWorker  # noqa: E402
from VolumeData import SliceState  # noqa: E402
from VolumeLoader import load_volume  # noqa: E402


def setup_logging(verbose: bool) -> None:
    """Send log records to stdout with timestamps."""
    level = logging.DEBUG if verbose else logging.INFO
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s", "%H:%M:%S")
    )
    logging.root.addHandler(handler)
    logging.root.setLevel(level)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Slice-wise level set brain segmentation"
    )
    parser.add_argument("volume", type=Path, help="3D image file or directory of slices")
    parser.add_argument("--config", type=Path, help="Path to YAML config file")
    parser.add_argument("--output", type=Path, help="Directory for mask images")
    parser.add_argument("--spacing", type=float, help="Override the inter-slice distance")
    parser.add_argument("--summary", type=Path, help="Write a JSON summary to this file")
    parser.add_argument("--verbose", action="store_true", help="Log per-iteration detail")
    return parser.parse_args(argv)


def log_progress(event: ProgressEvent) -> None:
    """Report committed slices; iteration events are too frequent for INFO."""
    if event.state.is_terminal:
        logger.info(f"Slice {event.slice_index} {event.state.value}")
    elif event.state == SliceState.RETRYING:
        logger.info(f"Slice {event.slice_index} retry {event.attempt}: {event.message}")


def run_propagation(
    volume_path: Path,
    config_path: Path | None = None,
    output_dir: Path | None = None,
    spacing: float | None = None,
    summary_path: Path | None = None,
) -> int:
    """Run one propagation and return the process exit code."""
    config = PropagationConfig.load(config_path) if config_path else PropagationConfig()
    if output_dir is not None:
        config.output_dir = output_dir
    if config.output_dir is None:
        logger.warning("No output directory given, masks will not be written")

    volume = load_volume(
        volume_path,
        inter_slice_distance=spacing,
        default_inter_slice_distance=config.inter_slice_distance,
    )

    controller = PropagationController(volume, config)
    worker = PropagationWorker(controller, progress_callback=log_progress)

    start_time = time.time()
    worker.start()
    try:
        while worker.is_running:
            worker.join(timeout=0.5)
    except KeyboardInterrupt:
        logger.warning("Interrupted, finishing remaining slices without evolution...")
        worker.cancel()
        worker.join()

    if worker.error is not None:
        logger.error(f"Propagation failed: {worker.error}")
        return 1

    result = worker.result
    logger.info(
        f"Done in {time.time() - start_time:.1f}s: {len(result.accepted_indices())} accepted, "
        f"rolled back: {result.rolled_back_indices() or 'none'}"
    )

    if summary_path is not None:
        summary = result.to_dict()
        summary["volume"] = str(volume_path)
        summary["config"] = config.to_dict()
        summary_path.parent.mkdir(parents=True, exist_ok=True)
        with open(summary_path, "w") as f:
            json.dump(summary, f, indent=2)
        logger.info(f"Summary written to {summary_path}")

    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(args.verbose)
    logger.debug(f"Args: {args}")

    try:
        return run_propagation(
            volume_path=args.volume,
            config_path=args.config,
            output_dir=args.output,
            spacing=args.spacing,
            summary_path=args.summary,
        )
    except (FileNotFoundError, ValueError) as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
