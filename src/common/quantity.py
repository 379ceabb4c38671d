"""Parsing of Kubernetes resource quantities (``500m``, ``1Gi``, ``2e3``) into decimals."""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Tuple


class QuantityParseError(ValueError):
    """Raised when a resource quantity cannot be interpreted."""


_BINARY_SUFFIXES: Dict[str, int] = {
    "Ki": 2**10,
    "Mi": 2**20,
    "Gi": 2**30,
    "Ti": 2**40,
    "Pi": 2**50,
    "Ei": 2**60,
}

_DECIMAL_SUFFIXES: Dict[str, Decimal] = {
    "n": Decimal("1e-9"),
    "u": Decimal("1e-6"),
    "m": Decimal("1e-3"),
    "": Decimal(1),
    "k": Decimal("1e3"),
    "M": Decimal("1e6"),
    "G": Decimal("1e9"),
    "T": Decimal("1e12"),
    "P": Decimal("1e15"),
    "E": Decimal("1e18"),
}

_QUANTITY_PATTERN = re.compile(
    r"^(?P<number>[+-]?(?:\d+\.?\d*|\.\d+))(?P<suffix>Ki|Mi|Gi|Ti|Pi|Ei|[eE][+-]?\d+|[numkMGTPE])?$"
)


def parse_quantity(value: Any) -> Decimal:
    """Convert a quantity string (or plain number) to a ``Decimal`` in base units."""

    if isinstance(value, bool):
        raise QuantityParseError(f"invalid quantity: {value!r}")
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if not isinstance(value, str):
        raise QuantityParseError(f"invalid quantity: {value!r}")

    match = _QUANTITY_PATTERN.match(value.strip())
    if match is None:
        raise QuantityParseError(f"invalid quantity: {value!r}")

    try:
        number = Decimal(match.group("number"))
    except InvalidOperation as exc:  # pragma: no cover - guarded by the pattern
        raise QuantityParseError(f"invalid quantity: {value!r}") from exc

    suffix = match.group("suffix") or ""
    if suffix in _BINARY_SUFFIXES:
        return number * _BINARY_SUFFIXES[suffix]
    if suffix[:1] in {"e", "E"} and len(suffix) > 1:
        return number.scaleb(int(suffix[1:]))
    return number * _DECIMAL_SUFFIXES[suffix]


def sum_requests(containers: Iterable[Dict[str, Any]]) -> Tuple[Decimal, Decimal]:
    """Sum the CPU and memory requests over a list of container manifests.

    Limits are ignored. Containers without a request contribute zero.
    """

    cpu_total = Decimal(0)
    memory_total = Decimal(0)
    for container in containers:
        if not isinstance(container, dict):
            continue
        resources = container.get("resources")
        requests = resources.get("requests") if isinstance(resources, dict) else None
        if not isinstance(requests, dict):
            continue
        if requests.get("cpu") is not None:
            cpu_total += parse_quantity(requests["cpu"])
        if requests.get("memory") is not None:
            memory_total += parse_quantity(requests["memory"])
    return cpu_total, memory_total


__all__ = ["QuantityParseError", "parse_quantity", "sum_requests"]
