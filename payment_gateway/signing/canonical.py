"""
Canonical parameter encoding for signing and verification.

The same routine produces the signing input for outbound payment URLs and
for inbound callbacks, so both sides agree byte for byte:

  1. Drop entries whose value is None or the empty string
  2. Drop the hash fields themselves
  3. Sort keys by code point (not locale collation)
  4. Percent-encode key and value over their UTF-8 bytes
  5. Join as key=value pairs with '&'

Encoding table: A-Z a-z 0-9 and '-', '_', '.', '~' are emitted as-is; every
other byte becomes %XX with uppercase hex. Space is %20, never '+'.
"""

from collections.abc import Iterable, Mapping
from typing import Any, Union
from urllib.parse import quote

from payment_gateway.errors import DuplicateKeyError

HASH_FIELDS = frozenset({"vnp_SecureHash", "vnp_SecureHashType"})

ParameterInput = Union[Mapping[str, Any], Iterable[tuple[str, Any]]]


def encode_component(text: str) -> str:
    """Percent-encode a key or value using the fixed table above."""
    return quote(text.encode("utf-8"), safe="")


def normalize_params(
    params: ParameterInput,
    exclude: Iterable[str] = HASH_FIELDS,
) -> dict[str, str]:
    """
    Reduce raw parameters to the set that gets signed.

    Accepts a mapping or an iterable of (key, value) pairs. Pairs are how raw
    query strings arrive, and they may repeat a key; that is rejected rather
    than silently letting the last value win.

    Raises:
        DuplicateKeyError: Two entries normalize to the same key.
    """
    excluded = set(exclude)
    items = params.items() if isinstance(params, Mapping) else params

    normalized: dict[str, str] = {}
    seen: set[str] = set()
    for raw_key, value in items:
        key = str(raw_key).strip()
        if key in seen:
            raise DuplicateKeyError(key)
        seen.add(key)

        if key in excluded or value is None:
            continue
        text = str(value)
        if text == "":
            continue
        normalized[key] = text

    return normalized


def canonicalize(
    params: ParameterInput,
    exclude: Iterable[str] = HASH_FIELDS,
) -> str:
    """Build the canonical signing string for a parameter set."""
    normalized = normalize_params(params, exclude)
    return "&".join(
        f"{encode_component(key)}={encode_component(normalized[key])}"
        for key in sorted(normalized)
    )
