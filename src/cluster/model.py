from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from src.common.errors import IdentityParseFailed

PROCESS_CLASS_GENERAL = "general"
PROCESS_CLASS_STORAGE = "storage"
PROCESS_CLASS_LOG = "log"
PROCESS_CLASS_TRANSACTION = "transaction"
PROCESS_CLASS_STATELESS = "stateless"
PROCESS_CLASS_CLUSTER_CONTROLLER = "cluster_controller"

_LOG_CLASSES = frozenset({PROCESS_CLASS_LOG, PROCESS_CLASS_TRANSACTION})
_STATEFUL_CLASSES = frozenset({PROCESS_CLASS_STORAGE}) | _LOG_CLASSES


def is_stateful(process_class: str) -> bool:
    """Stateful classes keep data on a persistent volume claim."""

    return process_class in _STATEFUL_CLASSES


def is_log_process(process_class: str) -> bool:
    return process_class in _LOG_CLASSES


def parse_process_group_number(process_group_id: str) -> int:
    """Return the numeric suffix of ``<class>-<n>`` or ``<prefix>-<class>-<n>``."""

    if not isinstance(process_group_id, str) or "-" not in process_group_id:
        raise IdentityParseFailed(f"process group ID {process_group_id!r} has no numeric suffix")
    suffix = process_group_id.rsplit("-", 1)[1]
    try:
        return int(suffix)
    except ValueError as exc:
        raise IdentityParseFailed(
            f"process group ID {process_group_id!r} has non-numeric suffix {suffix!r}"
        ) from exc


@dataclass
class ProcessGroupStatus:
    process_group_id: str
    process_class: str
    removal_timestamp: Optional[float] = None

    def is_marked_for_removal(self) -> bool:
        return self.removal_timestamp is not None

    def mark_for_removal(self) -> None:
        if self.removal_timestamp is None:
            self.removal_timestamp = time.time()

    def get_id_number(self) -> int:
        return parse_process_group_number(self.process_group_id)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "processGroupID": self.process_group_id,
            "processClass": self.process_class,
        }
        if self.removal_timestamp is not None:
            data["removalTimestamp"] = self.removal_timestamp
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProcessGroupStatus":
        process_group_id = data.get("processGroupID", data.get("process_group_id"))
        process_class = data.get("processClass", data.get("process_class"))
        if not isinstance(process_group_id, str) or not process_group_id:
            raise ValueError("process group status missing processGroupID")
        if not isinstance(process_class, str) or not process_class:
            raise ValueError(f"process group {process_group_id} missing processClass")
        removal = data.get("removalTimestamp", data.get("removal_timestamp"))
        return cls(
            process_group_id=process_group_id,
            process_class=process_class,
            removal_timestamp=float(removal) if removal is not None else None,
        )


__all__ = [
    "PROCESS_CLASS_CLUSTER_CONTROLLER",
    "PROCESS_CLASS_GENERAL",
    "PROCESS_CLASS_LOG",
    "PROCESS_CLASS_STATELESS",
    "PROCESS_CLASS_STORAGE",
    "PROCESS_CLASS_TRANSACTION",
    "ProcessGroupStatus",
    "is_log_process",
    "is_stateful",
    "parse_process_group_number",
]
