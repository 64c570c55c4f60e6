"""Principal identifier normalization at the API boundary."""

from __future__ import annotations

from typing import Any

from app.exceptions import PrincipalError

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


def normalize_principal_id(value: Any) -> int:
    """Coerce a decoded token claim to a signed 64-bit integer.

    JSON decoders may hand back ``42`` or ``42.0`` for the same claim;
    both are accepted. Anything else (strings, booleans, fractional
    floats, out-of-range numbers, missing claims) raises PrincipalError.
    """
    if isinstance(value, bool):
        raise PrincipalError(f"Unexpected type for user_id: {type(value).__name__}")

    if isinstance(value, int):
        principal_id = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise PrincipalError(f"Non-integral user_id: {value!r}")
        principal_id = int(value)
    else:
        raise PrincipalError(f"Unexpected type for user_id: {type(value).__name__}")

    if not INT64_MIN <= principal_id <= INT64_MAX:
        raise PrincipalError(f"user_id out of range: {principal_id}")
    return principal_id
