"""Format version policy.

Every version-dependent decision (hash algorithm, metadata layout) is made
here. Readers ask ``policy_for`` once and work from the returned record.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from vegh.errors import UnsupportedFormatVersionError


class HashAlgorithm(str, Enum):
    SHA256 = "sha256"
    BLAKE3 = "blake3"


class MetadataLayout(str, Enum):
    LEGACY = "legacy"
    EXTENDED = "extended"


CACHE_SCHEMA_VERSION = 2


@dataclass(slots=True, frozen=True)
class FormatV1:
    version: int = 1
    hash_algorithm: HashAlgorithm = HashAlgorithm.SHA256
    metadata_layout: MetadataLayout = MetadataLayout.LEGACY


@dataclass(slots=True, frozen=True)
class FormatV2:
    version: int = 2
    hash_algorithm: HashAlgorithm = HashAlgorithm.BLAKE3
    metadata_layout: MetadataLayout = MetadataLayout.EXTENDED
    cache_schema: int = CACHE_SCHEMA_VERSION


FormatPolicy = FormatV1 | FormatV2

_POLICIES: dict[int, FormatPolicy] = {
    1: FormatV1(),
    2: FormatV2(),
}

SUPPORTED_FORMAT_VERSIONS = tuple(sorted(_POLICIES))
CURRENT_FORMAT_VERSION = 2


def policy_for(version: int) -> FormatPolicy:
    policy = _POLICIES.get(version)
    if policy is None:
        raise UnsupportedFormatVersionError(version)
    return policy
