"""Bounded retry and rollback for rejected slices."""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np
from VolumeData import CommittedResult, SliceRecord, SliceState

if TYPE_CHECKING:
    from AcceptanceEvaluator import AcceptanceDecision
    from SliceEvolver import SliceEvolver

logger = logging.getLogger(__name__)


class RetryAction(str, Enum):
    """What the controller does after an evaluation round."""

    ACCEPT = "accept"
    RETRY = "retry"
    ROLLBACK = "rollback"


class RetryPolicy:
    """Decide between retry and rollback after a rejection.

    A slice gets at most ``max_retries`` extra evaluation rounds. Once they
    are used up, the slice is rolled back: its result becomes an exact copy
    of the neighbor's committed field, with no further evolution.
    """

    def __init__(self, max_retries: int = 2):
        self.max_retries = max(0, int(max_retries))

    @property
    def max_evaluations(self) -> int:
        """Return the most evaluation rounds a slice can use."""
        return self.max_retries + 1

    def start(self, record: SliceRecord) -> None:
        """Reset the attempt counter before a slice's first round."""
        record.attempts = 0

    def next_action(self, record: SliceRecord, decision: AcceptanceDecision) -> RetryAction:
        """Return the action for a finished evaluation round.

        Moves the record to RETRYING when another round is allowed.
        """
        if decision.accepted:
            return RetryAction.ACCEPT

        if record.attempts < self.max_retries:
            record.attempts += 1
            record.transition(SliceState.RETRYING)
            logger.info(
                f"Slice {record.index}: retry {record.attempts}/{self.max_retries} "
                f"({decision.reason})"
            )
            return RetryAction.RETRY

        logger.warning(
            f"Slice {record.index}: {self.max_evaluations} evaluation(s) rejected, "
            f"rolling back to slice {record.neighbor_index}"
        )
        return RetryAction.ROLLBACK

    def rollback(self, evolver: SliceEvolver, neighbor_phi: np.ndarray) -> CommittedResult:
        """Replace the slice's field with the neighbor's and commit it unchanged."""
        evolver.initialize_from_neighbor(neighbor_phi)
        return evolver.commit(SliceState.ROLLED_BACK)
