"""Device-hint matching logic."""

from __future__ import annotations

from collections.abc import Iterable

from wifiprov.core.errors import DeviceSelectionError
from wifiprov.core.model import Device


def match_score(device: Device, hint: str) -> int:
    lowered = hint.strip().lower()
    if not lowered:
        return 0
    identifier = device.identifier.lower()
    name = (device.display_name or "").lower()
    if identifier == lowered:
        return 3
    if lowered in identifier:
        return 2
    if lowered in name:
        return 1
    return 0


def matches_hint(device: Device, hint: str) -> bool:
    return match_score(device, hint) > 0


def select_device(devices: Iterable[Device], hint: str | None) -> Device:
    """Pick one device by hint; without a hint there must be exactly one candidate."""
    candidates = list(devices)
    if hint:
        scored = [(match_score(d, hint), d) for d in candidates]
        best = max((score for score, _ in scored), default=0)
        if best == 0:
            raise DeviceSelectionError(f"No device found matching '{hint}'")
        candidates = [d for score, d in scored if score == best]

    if not candidates:
        raise DeviceSelectionError("No provisionable devices found. Ensure the peripheral is advertising.")

    if len(candidates) > 1:
        candidate_desc = ", ".join(f"{d.identifier} ({d.label})" for d in candidates)
        raise DeviceSelectionError(
            f"Multiple candidate devices found: {candidate_desc}. Use --device to choose one."
        )

    return candidates[0]
