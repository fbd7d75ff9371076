from __future__ import annotations

import pytest

from vegh.errors import CorruptContainerError, UnsupportedFormatVersionError
from vegh.formats import (
    CURRENT_FORMAT_VERSION,
    SUPPORTED_FORMAT_VERSIONS,
    FormatV1,
    FormatV2,
    HashAlgorithm,
    MetadataLayout,
    policy_for,
)


def test_version_one_uses_legacy_algorithm_and_layout() -> None:
    policy = policy_for(1)
    assert isinstance(policy, FormatV1)
    assert policy.hash_algorithm is HashAlgorithm.SHA256
    assert policy.metadata_layout is MetadataLayout.LEGACY


def test_version_two_uses_blake3_and_extended_layout() -> None:
    policy = policy_for(2)
    assert isinstance(policy, FormatV2)
    assert policy.hash_algorithm is HashAlgorithm.BLAKE3
    assert policy.metadata_layout is MetadataLayout.EXTENDED
    assert policy.cache_schema == 2


@pytest.mark.parametrize("version", [0, 3, 99, 65535, -1])
def test_unknown_versions_are_unsupported_not_corrupt(version: int) -> None:
    with pytest.raises(UnsupportedFormatVersionError) as excinfo:
        policy_for(version)
    assert not isinstance(excinfo.value, CorruptContainerError)
    assert excinfo.value.version == version


def test_supported_versions_and_lookup_purity() -> None:
    assert SUPPORTED_FORMAT_VERSIONS == (1, 2)
    assert CURRENT_FORMAT_VERSION == 2
    assert policy_for(2) == policy_for(2)
