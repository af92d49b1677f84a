"""
Content fingerprints and cache keys.

Key format: "<content digest>:<analysis kind>:<context discriminator>".
The digest covers the primary input bytes only; everything else that changes
the prompt goes into the discriminator.
"""

import hashlib
import json
from typing import Iterable, Mapping

from vehicle_analysis.models import VehicleInfo


NO_VEHICLE = "novehicle"


def content_fingerprint(data: bytes) -> str:
    """SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def fingerprint_many(blobs: Iterable[bytes]) -> str:
    """
    Single fingerprint for an ordered set of inputs.

    Hashes the per-blob digests rather than the concatenated bytes, so
    (b"ab", b"c") and (b"a", b"bc") never collide.
    """
    outer = hashlib.sha256()
    for blob in blobs:
        outer.update(content_fingerprint(blob).encode("ascii"))
        outer.update(b"\n")
    return outer.hexdigest()


def vehicle_bytes(vehicle: VehicleInfo | None) -> bytes:
    """Canonical JSON encoding of vehicle metadata (sorted keys, no nulls)."""
    if vehicle is None:
        return b"{}"
    data = vehicle.model_dump(exclude_none=True)
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")


def context_discriminator(
    vehicle: VehicleInfo | None,
    prerequisites: Mapping[str, bool] | None = None,
    reference_year: int | None = None,
) -> str:
    """
    Describes everything besides the primary content that shapes the prompt.

    prerequisites maps a prerequisite kind to whether its result was
    available, so a degraded result never shadows a full one in the cache.
    reference_year feeds the vehicle age and mileage estimate in prompts.
    """
    if vehicle is None or not vehicle.model_dump(exclude_none=True):
        parts = [NO_VEHICLE]
    else:
        parts = ["vehicle-" + content_fingerprint(vehicle_bytes(vehicle))[:16]]

    if reference_year is not None:
        parts.append(f"year={reference_year}")

    for name in sorted(prerequisites or {}):
        parts.append(f"{name}={'ok' if prerequisites[name] else 'none'}")

    return "|".join(parts)


def cache_key(fingerprint: str, kind: str, discriminator: str) -> str:
    return f"{fingerprint}:{kind}:{discriminator}"
