"""YAML configuration for propagation runs.

Holds every tunable of the propagation controller, the acceptance test,
the reference evolver, the center seed, and mask output. Values can be
loaded from and saved to YAML files grouped into sections.
"""

from __future__ import annotations

import logging
import numbers
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_SECTIONS: dict[str, tuple[str, ...]] = {
    "limits": (
        "center_iteration_cap",
        "downward_iteration_cap",
        "upward_iteration_cap",
        "guard_band_low_fraction",
        "guard_band_high_fraction",
        "min_area_floor_downward",
        "min_area_floor_upward",
        "max_retries",
        "inter_slice_distance",
        "step_delay_seconds",
    ),
    "acceptance": (
        "large_mask_threshold",
        "jaccard_reject_threshold",
        "jaccard_warn_threshold",
        "contour_length_multiplier",
        "contour_length_factor",
    ),
    "evolver": (
        "curvature_weight",
        "propagation_weight",
        "curvature_adjust_factor",
        "iterations_per_step",
        "threshold_selector",
        "stationary_max",
        "max_rms_error",
    ),
    "seed": (
        "initial_radius",
        "center_offset_y",
    ),
    "output": (
        "output_dir",
        "fill_holes",
    ),
}

_INTEGER_FIELDS = (
    "center_iteration_cap",
    "downward_iteration_cap",
    "upward_iteration_cap",
    "min_area_floor_downward",
    "min_area_floor_upward",
    "max_retries",
    "large_mask_threshold",
    "contour_length_multiplier",
    "contour_length_factor",
    "iterations_per_step",
    "stationary_max",
    "center_offset_y",
)

_NUMBER_FIELDS = (
    "guard_band_low_fraction",
    "guard_band_high_fraction",
    "inter_slice_distance",
    "step_delay_seconds",
    "jaccard_reject_threshold",
    "jaccard_warn_threshold",
    "curvature_weight",
    "propagation_weight",
    "curvature_adjust_factor",
    "threshold_selector",
    "max_rms_error",
    "initial_radius",
)


def _is_number(value: Any, integral: bool = False) -> bool:
    if isinstance(value, bool):
        return False
    return isinstance(value, numbers.Integral if integral else numbers.Real)


@dataclass
class PropagationConfig:
    """Complete propagation configuration.

    Example YAML:
        name: "T1 brain"
        limits:
          center_iteration_cap: 1500
          downward_iteration_cap: 600
          upward_iteration_cap: 700
          max_retries: 2
        acceptance:
          large_mask_threshold: 10000
          jaccard_reject_threshold: 0.75
        evolver:
          curvature_weight: 1.0
          threshold_selector: 0.5
        output:
          output_dir: "masks"
    """

    name: str = "Propagation"

    # Limits
    center_iteration_cap: int = 1500
    downward_iteration_cap: int = 600
    upward_iteration_cap: int = 700
    guard_band_low_fraction: float = 0.45
    guard_band_high_fraction: float = 0.55
    min_area_floor_downward: int = 100
    min_area_floor_upward: int = 10
    max_retries: int = 2
    inter_slice_distance: float = 3.0
    step_delay_seconds: float = 0.0

    # Acceptance
    large_mask_threshold: int = 10000
    jaccard_reject_threshold: float = 0.75
    jaccard_warn_threshold: float = 0.90  # logged only, never rejects
    contour_length_multiplier: int = 4
    contour_length_factor: int = 2

    # Evolver
    curvature_weight: float = 1.0
    propagation_weight: float = 1.0
    curvature_adjust_factor: float = 5.0
    iterations_per_step: int = 1
    threshold_selector: float = 0.5
    stationary_max: int = 4
    max_rms_error: float = 0.02

    # Center seed
    initial_radius: float = 70.0
    center_offset_y: int = -30

    # Output
    output_dir: Path | None = None
    fill_holes: bool = True

    # Source path (set when loading)
    source_path: Path | None = None

    @classmethod
    def load(cls, config_path: Path | str) -> PropagationConfig:
        """Load configuration from YAML file.

        Args:
            config_path: Path to YAML config file.

        Returns:
            Loaded PropagationConfig.

        Raises:
            FileNotFoundError: If config file doesn't exist.
            ValueError: If config is invalid.
        """
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid config {config_path}: {e}") from e

        config = cls.from_dict(data)
        config.source_path = config_path

        errors = config.validate()
        if errors:
            raise ValueError(f"Invalid config {config_path}: " + "; ".join(errors))

        logger.info(f"Loaded propagation config '{config.name}' from {config_path}")
        return config

    @classmethod
    def from_dict(cls, data: dict) -> PropagationConfig:
        """Parse a configuration dictionary.

        Unknown sections and keys are ignored with a warning.

        Args:
            data: Parsed YAML dictionary.

        Returns:
            PropagationConfig instance.

        Raises:
            ValueError: If the data or one of its sections is not a mapping.
        """
        if not isinstance(data, dict):
            raise ValueError("Config must be a mapping of sections")

        config = cls()
        config.name = data.get("name", config.name)

        for section, values in data.items():
            if section == "name":
                continue
            if section not in _SECTIONS:
                logger.warning(f"Ignoring unknown config section: {section}")
                continue
            if values is None:
                continue
            if not isinstance(values, dict):
                raise ValueError(f"Config section '{section}' must be a mapping")
            for key, value in values.items():
                if key not in _SECTIONS[section]:
                    logger.warning(f"Ignoring unknown config key: {section}.{key}")
                    continue
                setattr(config, key, value)

        if config.output_dir is not None:
            if not isinstance(config.output_dir, (str, Path)):
                raise ValueError("output.output_dir must be a path")
            config.output_dir = Path(config.output_dir)

        return config

    def validate(self) -> list[str]:
        """Validate configuration.

        Returns:
            List of validation error messages (empty if valid).
        """
        errors = [
            f"{name} must be an integer"
            for name in _INTEGER_FIELDS
            if not _is_number(getattr(self, name), integral=True)
        ]
        errors += [
            f"{name} must be a number"
            for name in _NUMBER_FIELDS
            if not _is_number(getattr(self, name))
        ]
        if errors:
            return errors

        for cap in ("center_iteration_cap", "downward_iteration_cap", "upward_iteration_cap"):
            if getattr(self, cap) < 0:
                errors.append(f"{cap} must not be negative")

        if not 0.0 <= self.guard_band_low_fraction <= self.guard_band_high_fraction <= 1.0:
            errors.append("guard band fractions must satisfy 0 <= low <= high <= 1")

        if self.min_area_floor_downward < 0 or self.min_area_floor_upward < 0:
            errors.append("area floors must not be negative")

        if self.max_retries < 0:
            errors.append("max_retries must not be negative")

        if not 0.0 <= self.jaccard_reject_threshold <= 1.0:
            errors.append("jaccard_reject_threshold must be in [0, 1]")

        if not 0.0 <= self.jaccard_warn_threshold <= 1.0:
            errors.append("jaccard_warn_threshold must be in [0, 1]")

        if self.large_mask_threshold < 0:
            errors.append("large_mask_threshold must not be negative")

        if self.contour_length_multiplier <= 0 or self.contour_length_factor <= 0:
            errors.append("contour length multiplier and factor must be positive")

        if self.step_delay_seconds < 0:
            errors.append("step_delay_seconds must not be negative")

        if self.iterations_per_step <= 0:
            errors.append("iterations_per_step must be positive")

        if self.curvature_adjust_factor <= 0:
            errors.append("curvature_adjust_factor must be positive")

        if self.initial_radius <= 0:
            errors.append("initial_radius must be positive")

        return errors

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization.

        Returns:
            Configuration as dictionary.
        """
        result: dict[str, Any] = {"name": self.name}
        for section, keys in _SECTIONS.items():
            result[section] = {key: getattr(self, key) for key in keys}
        if self.output_dir is not None:
            result["output"]["output_dir"] = str(self.output_dir)
        return result

    def save(self, output_path: Path | str) -> None:
        """Save configuration to YAML file.

        Args:
            output_path: Path where to save config.
        """
        output_path = Path(output_path)
        with open(output_path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
        logger.info(f"Saved propagation config to {output_path}")

