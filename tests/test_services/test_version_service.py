"""Tests for version comparison."""

from __future__ import annotations

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from bountu.services.version_service import compare_versions, version_key

PROPERTY_SETTINGS = settings(
    max_examples=200,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

_VERSION = st.text(alphabet="0123456789.-abrc", min_size=0, max_size=12)


class TestCompareVersions:
    @pytest.mark.parametrize(
        ("older", "newer"),
        [
            ("1.0", "1.1"),
            ("1.9", "1.10"),
            ("8.4.0", "8.5.0"),
            ("1.0", "1.0.1"),
            ("1.0.0", "1.0.0.1"),
            ("1.0.0rc1", "1.0"),
            ("1.0rc1", "1.0"),
            ("1.0a", "1.0b"),
            ("2023.1", "2024.1"),
        ],
    )
    def test_orders_versions(self, older: str, newer: str) -> None:
        assert compare_versions(older, newer) == -1
        assert compare_versions(newer, older) == 1

    @pytest.mark.parametrize(("a", "b"), [("1.0", "1.0.0"), ("2.1", "2.1.0"), ("3", "3.0.0.0")])
    def test_missing_segments_count_as_zero(self, a: str, b: str) -> None:
        assert compare_versions(a, b) == 0
        assert compare_versions(b, a) == 0

    def test_separators_do_not_matter(self) -> None:
        assert compare_versions("1.2-3", "1.2.3") == 0

    def test_alphabetic_tokens_ignore_case(self) -> None:
        assert compare_versions("1.0RC1", "1.0rc1") == 0

    def test_numeric_token_beats_alphabetic(self) -> None:
        assert version_key("1.0") > version_key("1.a")


class TestCompareVersionsProperties:
    @PROPERTY_SETTINGS
    @given(version=_VERSION)
    def test_reflexive(self, version: str) -> None:
        assert compare_versions(version, version) == 0

    @PROPERTY_SETTINGS
    @given(a=_VERSION, b=_VERSION)
    def test_antisymmetric(self, a: str, b: str) -> None:
        assert compare_versions(a, b) == -compare_versions(b, a)
