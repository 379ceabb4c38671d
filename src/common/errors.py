"""Error kinds shared by the cluster model, lookups and the replacement engine."""

from __future__ import annotations


class ReplacementError(Exception):
    """Base class for errors raised while deciding on a process group replacement."""


class LookupFailed(ReplacementError):
    """Raised when observed state could not be fetched (as opposed to not existing)."""


class IdentityParseFailed(ReplacementError):
    """Raised when a stored process group ID cannot be parsed."""


class FingerprintComputationFailed(ReplacementError):
    """Raised when the desired state cannot be built or hashed."""


class InvalidObservedState(ReplacementError):
    """Raised when an observed workload carries values that cannot be interpreted."""


class ClusterConfigError(ReplacementError):
    """Raised when the cluster configuration makes evaluation meaningless for every group."""


__all__ = [
    "ClusterConfigError",
    "FingerprintComputationFailed",
    "IdentityParseFailed",
    "InvalidObservedState",
    "LookupFailed",
    "ReplacementError",
]
