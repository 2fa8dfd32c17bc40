"""Plausibility test for a converged slice contour.

A candidate is compared with the committed contour of the neighbor it was
seeded from. Large masks must overlap the neighbor well (Jaccard); small
masks, typically near the top or bottom of the brain, must not grow by
more than a band proportional to the neighbor's contour length.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

import numpy as np
import PhiOperations

if TYPE_CHECKING:
    from PropagationConfig import PropagationConfig
    from SliceEvolver import SliceEvolver

logger = logging.getLogger(__name__)


@dataclass
class AcceptanceDecision:
    """Outcome of one acceptance evaluation."""

    accepted: bool
    branch: str
    """"large_mask" (Jaccard test) or "area_growth" (area difference test)."""

    jaccard: float
    mask_area: int
    neighbor_area: int
    area_difference: int
    max_area_difference: Optional[int] = None
    """Allowed growth; only set for the area growth test."""

    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "accepted": self.accepted,
            "branch": self.branch,
            "jaccard": self.jaccard,
            "mask_area": self.mask_area,
            "neighbor_area": self.neighbor_area,
            "area_difference": self.area_difference,
            "max_area_difference": self.max_area_difference,
            "reason": self.reason,
        }


class AcceptanceEvaluator:
    """Score a candidate contour against its neighbor's committed contour."""

    LARGE_MASK = "large_mask"
    AREA_GROWTH = "area_growth"

    def __init__(
        self,
        large_mask_threshold: int = 10000,
        jaccard_reject_threshold: float = 0.75,
        jaccard_warn_threshold: float = 0.90,
        contour_length_multiplier: int = 4,
        contour_length_factor: int = 2,
    ):
        """Initialize the evaluator.

        Args:
            large_mask_threshold: Masks with more pixels than this use the
                Jaccard test; others use the area growth test.
            jaccard_reject_threshold: Large masks below this Jaccard are rejected.
            jaccard_warn_threshold: Large masks below this Jaccard are reported
                but not rejected.
            contour_length_multiplier: Growth band per contour pixel.
            contour_length_factor: Extra factor on the growth band.
        """
        self.large_mask_threshold = large_mask_threshold
        self.jaccard_reject_threshold = jaccard_reject_threshold
        self.jaccard_warn_threshold = jaccard_warn_threshold
        self.contour_length_multiplier = contour_length_multiplier
        self.contour_length_factor = contour_length_factor

    @classmethod
    def from_config(cls, config: PropagationConfig) -> AcceptanceEvaluator:
        """Create an evaluator from the acceptance section of a config."""
        return cls(
            large_mask_threshold=config.large_mask_threshold,
            jaccard_reject_threshold=config.jaccard_reject_threshold,
            jaccard_warn_threshold=config.jaccard_warn_threshold,
            contour_length_multiplier=config.contour_length_multiplier,
            contour_length_factor=config.contour_length_factor,
        )

    def evaluate(
        self,
        candidate_phi: np.ndarray,
        evolver: SliceEvolver,
        neighbor_phi: np.ndarray,
    ) -> AcceptanceDecision:
        """Decide whether a converged candidate is plausible.

        On rejection the evolver's curvature weight is raised so that the
        next round produces a smoother contour.

        Args:
            candidate_phi: Converged field of the slice being judged.
            evolver: The slice's evolver, used for measurements and adjustment.
            neighbor_phi: Committed field of the neighbor the slice was seeded from.

        Returns:
            AcceptanceDecision describing the test that was applied.

        Raises:
            ValueError: If the candidate and neighbor grids differ in shape.
        """
        jaccard = PhiOperations.jaccard(neighbor_phi, candidate_phi)
        mask_area = evolver.mask_area(candidate_phi)
        neighbor_area = evolver.mask_area(neighbor_phi)
        difference = mask_area - neighbor_area

        if mask_area > self.large_mask_threshold:
            decision = self._judge_large_mask(evolver.index, jaccard, mask_area, neighbor_area)
        else:
            decision = self._judge_area_growth(
                evolver, neighbor_phi, jaccard, mask_area, neighbor_area
            )

        logger.info(
            f"Slice {evolver.index}: jaccard={jaccard:.3f}, area difference={difference} "
            f"({decision.branch}) -> {'accepted' if decision.accepted else 'rejected'}"
        )

        if not decision.accepted:
            logger.warning(f"Slice {evolver.index} rejected: {decision.reason}")
            evolver.adjust_curvature()

        return decision

    def _judge_large_mask(
        self, index: int, jaccard: float, mask_area: int, neighbor_area: int
    ) -> AcceptanceDecision:
        difference = mask_area - neighbor_area
        if jaccard < self.jaccard_reject_threshold:
            return AcceptanceDecision(
                accepted=False,
                branch=self.LARGE_MASK,
                jaccard=jaccard,
                mask_area=mask_area,
                neighbor_area=neighbor_area,
                area_difference=difference,
                reason=f"jaccard {jaccard:.3f} < {self.jaccard_reject_threshold}",
            )

        if jaccard < self.jaccard_warn_threshold:
            logger.info(
                f"Slice {index}: jaccard {jaccard:.3f} below {self.jaccard_warn_threshold}, "
                f"accepting"
            )

        return AcceptanceDecision(
            accepted=True,
            branch=self.LARGE_MASK,
            jaccard=jaccard,
            mask_area=mask_area,
            neighbor_area=neighbor_area,
            area_difference=difference,
        )

    def _judge_area_growth(
        self,
        evolver: SliceEvolver,
        neighbor_phi: np.ndarray,
        jaccard: float,
        mask_area: int,
        neighbor_area: int,
    ) -> AcceptanceDecision:
        difference = mask_area - neighbor_area
        contour = evolver.contour_length(neighbor_phi)

        if contour > 0:
            max_difference = contour * self.contour_length_multiplier * self.contour_length_factor
        else:
            # No neighbor boundary to scale by: always accept
            max_difference = difference

        accepted = difference <= max_difference
        return AcceptanceDecision(
            accepted=accepted,
            branch=self.AREA_GROWTH,
            jaccard=jaccard,
            mask_area=mask_area,
            neighbor_area=neighbor_area,
            area_difference=difference,
            max_area_difference=max_difference,
            reason="" if accepted else f"area grew by {difference} > {max_difference}",
        )
