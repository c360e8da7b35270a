from __future__ import annotations

from typing import Iterable

from smartctl_tap.metadata import DeviceMetadata


def matches_token(metadata: DeviceMetadata, token: str) -> bool:
    if not token or not token.strip():
        return False
    needle = token.casefold()
    return any(
        value and value.strip() and needle in value.casefold()
        for value in metadata.searchable_fields()
    )


def find_exclusion(metadata: DeviceMetadata, tokens: Iterable[str]) -> str | None:
    """Return the first token that excludes the device, if any."""
    for token in tokens:
        if matches_token(metadata, token):
            return token
    return None


def is_excluded(metadata: DeviceMetadata, tokens: Iterable[str]) -> bool:
    return find_exclusion(metadata, tokens) is not None
