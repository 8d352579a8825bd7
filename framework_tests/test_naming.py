import string

import hypothesis
import hypothesis.strategies as st
import pytest

from atlas_cluster_tests.cluster_management import common
from atlas_cluster_tests.cluster_management import naming

SCOPE_ALPHABET = string.ascii_letters + string.digits + "_-.:[]/ "


def test_shared_name():
    assert naming.shared_key("M0", "7.0") == "m0-70"
    assert naming.shared_name("M10", "8.0") == "shared-test-m10-80"
    assert naming.shared_name("m10", " 8.0 ") == naming.shared_name("M10", "8.0")


@pytest.mark.parametrize(
    ("instance_size", "mongo_version"),
    (("", "7.0"), ("M10", ""), ("...", "7.0"), ("M10", "-"), ("M10", "7" * 64)),
)
def test_shared_key_invalid(instance_size: str, mongo_version: str):
    with pytest.raises(ValueError):
        naming.shared_key(instance_size, mongo_version)


@hypothesis.given(
    instance_size=st.sampled_from(["M0", "M2", "M5", "M10", "M30", "FLEX", "R40"]),
    mongo_version=st.from_regex(r"[0-9]{1,2}\.[0-9]", fullmatch=True),
)
def test_shared_name_deterministic(instance_size: str, mongo_version: str):
    """Identical inputs always map to the same name (property-based test)."""
    name = naming.shared_name(instance_size, mongo_version)
    assert name == naming.shared_name(instance_size.lower(), mongo_version)
    assert naming.is_shared_name(name)
    assert not naming.is_isolated_name(name)


def test_isolated_name():
    name = naming.isolated_name("TestClusters::test_Create[M0]", 1700000000123)
    assert name == "isolated-test-testclusters-test-create-m0-1700000000123"
    assert naming.is_isolated_name(name)
    assert not naming.is_shared_name(name)


def test_isolated_name_different_scopes():
    assert naming.isolated_name("A", 1700000000000) != naming.isolated_name("B", 1700000000000)


@pytest.mark.parametrize("scope_id", ("", "---", "$$$"))
def test_isolated_key_invalid_scope(scope_id: str):
    with pytest.raises(ValueError):
        naming.isolated_key(scope_id, 1700000000000)


def test_isolated_key_negative_timestamp():
    with pytest.raises(ValueError):
        naming.isolated_key("scope", -1)


@hypothesis.given(
    scope_id=st.text(alphabet=SCOPE_ALPHABET, min_size=1, max_size=200),
    timestamp_ms=st.integers(min_value=0, max_value=9_999_999_999_999),
    delta=st.integers(min_value=1, max_value=10_000),
)
def test_isolated_name_unique(scope_id: str, timestamp_ms: int, delta: int):
    """Same scope at different times never collides (property-based test)."""
    hypothesis.assume(naming.sanitize_scope(scope_id))

    name = naming.isolated_name(scope_id, timestamp_ms)
    later_name = naming.isolated_name(scope_id, timestamp_ms + delta)

    assert name != later_name
    assert len(name) <= common.MAX_NAME_LEN
    assert naming.is_isolated_name(name)
    assert naming.is_isolated_name(later_name)


def test_sanitize_scope_truncated():
    sanitized = naming.sanitize_scope("x" * 100)
    assert sanitized == "x" * 36
    assert not naming.sanitize_scope("a" * 35 + "--b").endswith("-")
