"""Canonicalization and content addressing.

This module defines the Canon: the single byte encoding every JSON-like value
reduces to, and the CID derived from it.

Canonical form:
- strings (keys and values) in Unicode NFC
- integers only, within the signed 64-bit range; floats are rejected
- object entries with a null value are dropped; keys sorted byte-wise
- array order and array nulls preserved
- UTF-8 JSON with no insignificant whitespace

CID: SHA-256 of the canonical bytes, rendered as unpadded URL-safe base64.

Design principles:
- Pure functions; the input value is never mutated, a new tree is returned
- A single violation aborts the whole operation (no partial output)
- The error names the JSON path of the offending node
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import re
import unicodedata
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from rho.config import get_config
from rho.errors import CidMismatchError, NormalizeError

INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1

DIGEST_SIZE = 32
CID_RE = re.compile(r"^[A-Za-z0-9_-]{43}$")


# ---------------------------------------------------------------------------
# base64url / CID helpers
# ---------------------------------------------------------------------------


def b64url_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode("ascii")


def b64url_decode(s: str) -> bytes:
    """Decode unpadded URL-safe base64. Raises ValueError on bad input."""
    if not isinstance(s, str) or not re.fullmatch(r"[A-Za-z0-9_-]*", s):
        raise ValueError("not an unpadded base64url string")
    pad = "=" * ((4 - len(s) % 4) % 4)
    try:
        return base64.urlsafe_b64decode((s + pad).encode("ascii"))
    except binascii.Error as e:
        raise ValueError(f"invalid base64url: {e}") from e


def sha256_digest(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def compute_cid(data: bytes) -> str:
    """CID of arbitrary bytes."""
    return b64url_encode(sha256_digest(bytes(data)))


def is_valid_cid(cid: Any) -> bool:
    """Check the textual CID form (43 base64url chars, 32-byte digest)."""
    return isinstance(cid, str) and bool(CID_RE.match(cid))


def cid_to_bytes(cid: str) -> bytes:
    """Decode a CID to its 32-byte digest."""
    if not is_valid_cid(cid):
        raise ValueError(f"malformed CID: {cid!r}")
    raw = b64url_decode(cid)
    if len(raw) != DIGEST_SIZE:
        raise ValueError(f"CID digest must be {DIGEST_SIZE} bytes, got {len(raw)}")
    return raw


def cid_from_bytes(raw: bytes) -> str:
    """Render a 32-byte digest as a CID."""
    if len(raw) != DIGEST_SIZE:
        raise ValueError(f"CID digest must be {DIGEST_SIZE} bytes, got {len(raw)}")
    return b64url_encode(raw)


def verify_cid(data: bytes, expected: str, what: str = "") -> str:
    """Recompute the CID of data; raise CidMismatchError if it differs."""
    actual = compute_cid(data)
    if actual != expected:
        raise CidMismatchError(expected, actual, what=what)
    return actual


# ---------------------------------------------------------------------------
# Canonicalization
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Canonical:
    """Result of canonicalization: the canonical bytes, their CID and the tree."""
    data: bytes
    cid: str
    value: Any

    @property
    def text(self) -> str:
        return self.data.decode("utf-8")

    def __iter__(self):
        # Allows ``data, cid = canonicalize(v)``.
        yield self.data
        yield self.cid


def _nfc(s: str) -> str:
    return unicodedata.normalize("NFC", s)


def _child(path: str, key: Union[str, int]) -> str:
    if isinstance(key, int):
        return f"{path}[{key}]"
    if re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", key):
        return f"{path}.{key}"
    return f"{path}[{json.dumps(key, ensure_ascii=False)}]"


def normalize_value(obj: Any, path: str = "$", max_depth: Optional[int] = None) -> Any:
    """Return the canonical tree for obj without serializing it.

    Raises NormalizeError on the first violation.
    """
    if max_depth is None:
        max_depth = get_config().canon.max_depth.get()
    return _normalize(obj, path, 0, max_depth)


def _normalize(obj: Any, path: str, depth: int, max_depth: int) -> Any:
    if depth > max_depth:
        raise NormalizeError(f"nesting deeper than {max_depth}", path=path)

    if obj is None or isinstance(obj, bool):
        return obj
    if isinstance(obj, int):
        if obj < INT64_MIN or obj > INT64_MAX:
            raise NormalizeError("integer outside the signed 64-bit range", path=path)
        return int(obj)
    if isinstance(obj, float):
        raise NormalizeError(
            "only i64 integers allowed, no floats or exponential notation", path=path
        )
    if isinstance(obj, str):
        return _nfc(obj)
    if isinstance(obj, (list, tuple)):
        return [_normalize(v, _child(path, i), depth + 1, max_depth) for i, v in enumerate(obj)]
    if isinstance(obj, dict):
        entries: Dict[str, Any] = {}
        sources: Dict[str, str] = {}
        for k, v in obj.items():
            if not isinstance(k, str):
                raise NormalizeError(
                    f"object keys must be strings, got {type(k).__name__}", path=path
                )
            if v is None:
                continue
            nk = _nfc(k)
            if nk in entries:
                raise NormalizeError(
                    f"keys {sources[nk]!r} and {k!r} collide after NFC normalization",
                    path=path,
                )
            entries[nk] = _normalize(v, _child(path, nk), depth + 1, max_depth)
            sources[nk] = k
        return {k: entries[k] for k in sorted(entries, key=lambda s: s.encode("utf-8"))}
    raise NormalizeError(f"unsupported type {type(obj).__name__}", path=path)


def _serialize(tree: Any) -> bytes:
    try:
        return json.dumps(
            tree,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        ).encode("utf-8")
    except UnicodeEncodeError as e:
        # lone surrogates cannot be encoded as UTF-8
        raise NormalizeError(f"string is not encodable as UTF-8: {e.reason}") from e


def canonicalize(value: Any) -> Canonical:
    """Reduce value to its canonical bytes and CID.

    Keys are emitted in the order produced by normalize_value, which is the
    byte-wise order of their UTF-8 encoding.
    """
    tree = normalize_value(value)
    data = _serialize(tree)
    return Canonical(data=data, cid=compute_cid(data), value=tree)


def canonical_bytes(value: Any) -> bytes:
    return canonicalize(value).data


def _reject_duplicate_keys(pairs: List[Tuple[str, Any]]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in pairs:
        if k in out:
            raise NormalizeError(f"duplicate key {k!r} in JSON text")
        out[k] = v
    return out


def _reject_constant(name: str) -> Any:
    raise NormalizeError(f"{name} is not a JSON number")


def parse_json(text: Union[str, bytes]) -> Any:
    """Parse JSON text strictly: duplicate keys, NaN and Infinity are rejected."""
    if isinstance(text, (bytes, bytearray)):
        try:
            text = bytes(text).decode("utf-8")
        except UnicodeDecodeError as e:
            raise NormalizeError(f"input is not valid UTF-8: {e.reason}") from e
    try:
        return json.loads(
            text,
            object_pairs_hook=_reject_duplicate_keys,
            parse_constant=_reject_constant,
        )
    except json.JSONDecodeError as e:
        raise NormalizeError(f"invalid JSON: {e.msg} (line {e.lineno}, column {e.colno})") from e
    except RecursionError as e:
        raise NormalizeError("JSON text is nested too deeply to parse") from e


def canonicalize_json(text: Union[str, bytes]) -> Canonical:
    """Parse JSON text then canonicalize it.

    Numbers written with a fraction or an exponent parse as floats and are
    rejected.
    """
    return canonicalize(parse_json(text))


def parse_canonical(data: bytes) -> Any:
    """Parse canonical bytes back into a tree."""
    return parse_json(data)


def is_canonical(data: bytes) -> bool:
    """True if data is exactly the canonical encoding of what it parses to."""
    try:
        return canonicalize_json(data).data == bytes(data)
    except NormalizeError:
        return False
