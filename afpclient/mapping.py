"""Names of the user/group mapping modes of a volume."""

from __future__ import annotations

MAPPING_UNKNOWN = 0
MAPPING_COMMON_USER_DIRECTORY = 1
MAPPING_LOGINIDS = 2
MAPPING_NAME_MAPPED = 3

_MAP_NAMES = (
    "Unknown",
    "Common user directory",
    "Login ids",
    "Name mapped",
)


def mapping_name(mapping: int) -> str:
    """Return the human-readable name of a mapping mode."""
    if not 0 <= mapping < len(_MAP_NAMES):
        raise ValueError(f"unknown mapping {mapping}")
    return _MAP_NAMES[mapping]


def map_string_to_num(name: str) -> int:
    """Look up a mapping mode by name, ignoring case; unknown names give 0."""
    lowered = name.lower()
    for number, candidate in enumerate(_MAP_NAMES):
        if candidate.lower() == lowered:
            return number
    return MAPPING_UNKNOWN