"""Effective security context resolution and file ownership change detection.

Changes to ``runAsUser``, ``runAsGroup``, ``fsGroup`` or ``fsGroupChangePolicy``
alter which numeric user or group owns the files a process writes to its
volumes. Updating those in place can leave existing files owned by the wrong
user, so they are tracked separately from the rest of the pod spec. See
https://github.com/FoundationDB/fdb-kubernetes-operator/issues/208.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

_FILE_OWNERSHIP_POD_FIELDS = ("fsGroup", "fsGroupChangePolicy")


@dataclass(frozen=True)
class EffectiveSecurityContext:
    """The run-as identity a container ends up with; only these fields decide file ownership."""

    run_as_user: Optional[int] = None
    run_as_group: Optional[int] = None

    def run_as_identity(self) -> Tuple[Optional[int], Optional[int]]:
        return (self.run_as_user, self.run_as_group)


def _pod_spec(pod: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not isinstance(pod, dict):
        return {}
    spec = pod.get("spec")
    return spec if isinstance(spec, dict) else {}


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _override(pod_context: Dict[str, Any], container_context: Dict[str, Any], field: str) -> Any:
    value = container_context.get(field)
    if value is not None:
        return value
    return pod_context.get(field)


def determine_effective_security_context(
    pod_security_context: Optional[Dict[str, Any]],
    container_security_context: Optional[Dict[str, Any]],
) -> EffectiveSecurityContext:
    """Merge the pod security context with a container's; container values win when set."""

    pod_context = _as_dict(pod_security_context)
    container_context = _as_dict(container_security_context)
    return EffectiveSecurityContext(
        run_as_user=_override(pod_context, container_context, "runAsUser"),
        run_as_group=_override(pod_context, container_context, "runAsGroup"),
    )


def pod_file_ownership_changed(desired: Optional[Dict[str, Any]], current: Optional[Dict[str, Any]]) -> bool:
    """Compare ``fsGroup`` and ``fsGroupChangePolicy``; a missing context equals an empty one."""

    desired_context = _as_dict(_pod_spec(desired).get("securityContext"))
    current_context = _as_dict(_pod_spec(current).get("securityContext"))
    return any(desired_context.get(field) != current_context.get(field) for field in _FILE_OWNERSHIP_POD_FIELDS)


def _containers(pod: Optional[Dict[str, Any]]) -> Iterable[Dict[str, Any]]:
    for container in _pod_spec(pod).get("containers") or []:
        if isinstance(container, dict):
            yield container


def run_as_identity_changed(desired: Optional[Dict[str, Any]], current: Optional[Dict[str, Any]]) -> bool:
    """Compare effective ``runAsUser``/``runAsGroup`` of every same-named container pair."""

    desired_pod_context = _pod_spec(desired).get("securityContext")
    current_pod_context = _pod_spec(current).get("securityContext")
    current_containers = list(_containers(current))

    for desired_container in _containers(desired):
        desired_identity = determine_effective_security_context(
            desired_pod_context, desired_container.get("securityContext")
        ).run_as_identity()
        for current_container in current_containers:
            if current_container.get("name") != desired_container.get("name"):
                continue
            current_identity = determine_effective_security_context(
                current_pod_context, current_container.get("securityContext")
            ).run_as_identity()
            if desired_identity != current_identity:
                return True
    return False


def file_security_context_changed(desired: Optional[Dict[str, Any]], current: Optional[Dict[str, Any]]) -> bool:
    """Whether any setting that determines file ownership differs between the two pods."""

    # fsGroup cannot be overridden per container, so it is checked on the pod alone.
    if pod_file_ownership_changed(desired, current):
        return True
    return run_as_identity_changed(desired, current)


__all__ = [
    "EffectiveSecurityContext",
    "determine_effective_security_context",
    "file_security_context_changed",
    "pod_file_ownership_changed",
    "run_as_identity_changed",
]
