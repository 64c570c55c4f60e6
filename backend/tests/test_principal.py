"""Tests for principal id normalization."""

import pytest

from app.exceptions import PrincipalError
from app.utils.principal import INT64_MAX, INT64_MIN, normalize_principal_id


@pytest.mark.parametrize(
    "value,expected",
    [
        (42, 42),
        (42.0, 42),
        (0, 0),
        (-7, -7),
        (INT64_MAX, INT64_MAX),
        (INT64_MIN, INT64_MIN),
    ],
)
def test_accepts_integral_numbers(value, expected):
    result = normalize_principal_id(value)
    assert result == expected
    assert type(result) is int


@pytest.mark.parametrize("value", ["42", True, False, None, 42.5, [42], {"id": 42}])
def test_rejects_other_types(value):
    with pytest.raises(PrincipalError):
        normalize_principal_id(value)


@pytest.mark.parametrize("value", [INT64_MAX + 1, INT64_MIN - 1, 1e19])
def test_rejects_out_of_range(value):
    with pytest.raises(PrincipalError, match="out of range"):
        normalize_principal_id(value)
