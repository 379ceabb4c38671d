from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from src.cluster.config import ClusterConfig
from src.cluster.lookup import PodLookup
from src.cluster.model import ProcessGroupStatus
from src.common.errors import ClusterConfigError, ReplacementError

from .evaluator import process_group_needs_removal

logger = logging.getLogger(__name__)


@dataclass
class ReplacementBudget:
    """Replacements still allowed in the current scan; ``limit`` None is unlimited."""

    limit: Optional[int] = None
    used: int = 0

    @property
    def unlimited(self) -> bool:
        return self.limit is None

    @property
    def remaining(self) -> Optional[int]:
        if self.limit is None:
            return None
        return max(self.limit - self.used, 0)

    def exhausted(self) -> bool:
        return self.limit is not None and self.used >= self.limit

    def consume(self) -> None:
        self.used += 1


def derive_budget(configured_max: Optional[int]) -> ReplacementBudget:
    if configured_max is None:
        return ReplacementBudget()
    if isinstance(configured_max, bool) or not isinstance(configured_max, int) or configured_max < 0:
        raise ClusterConfigError(
            f"maxConcurrentReplacements must be a non-negative integer, got {configured_max!r}"
        )
    return ReplacementBudget(limit=configured_max)


def replace_misconfigured_process_groups(
    cluster: ClusterConfig,
    process_groups: Iterable[ProcessGroupStatus],
    pod_lookup: PodLookup,
    pvc_map: Mapping[str, Dict[str, Any]],
) -> bool:
    """Mark every misconfigured process group for removal, within the replacement budget.

    Groups are visited in order and the scan stops as soon as the budget is
    used up. A group whose evaluation fails is left unmarked until the next
    scan. Returns whether any group was newly marked.
    """

    budget = derive_budget(cluster.get_max_concurrent_replacements())
    has_replacements = False

    for process_group in process_groups:
        if budget.exhausted():
            logger.info("Early abort, reached limit of concurrent replacements")
            break

        if process_group.is_marked_for_removal():
            continue

        try:
            needs_removal = process_group_needs_removal(cluster, process_group, pod_lookup, pvc_map)
        except ReplacementError as exc:
            logger.warning(
                "Skipping process group %s, could not decide on replacement: %s",
                process_group.process_group_id,
                exc,
            )
            continue

        if needs_removal:
            process_group.mark_for_removal()
            has_replacements = True
            budget.consume()

    return has_replacements


def marked_process_group_ids(process_groups: Iterable[ProcessGroupStatus]) -> List[str]:
    return [group.process_group_id for group in process_groups if group.is_marked_for_removal()]


__all__ = [
    "ReplacementBudget",
    "derive_budget",
    "marked_process_group_ids",
    "replace_misconfigured_process_groups",
]
