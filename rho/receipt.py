"""
Execution receipts.

A receipt pairs a canonical body with its content CID and any attached
signatures:

    {
      "body": <canonical tree>,
      "receipt": {
        "content_cid": "<cid of canonical body>",
        "signatures": [{"algorithm", "public_key", "signature"}, ...]
      }
    }

Signatures are recorded, never checked, at emission time. The CID depends only
on the body, so adding signatures never changes a receipt's identity.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Tuple, Union

from rho.core import canonicalize
from rho.errors import CidMismatchError, ValidateError
from rho.observability import Layer, get_logger

logger = get_logger("receipt", Layer.RECEIPT)


@dataclass(frozen=True)
class Signature:
    """An attestation attached to a receipt."""
    algorithm: str
    public_key: str
    signature: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Signature":
        if not isinstance(data, Mapping):
            raise ValidateError(f"signature must be an object, got {type(data).__name__}")
        missing = [k for k in ("algorithm", "public_key", "signature") if k not in data]
        if missing:
            raise ValidateError(f"signature is missing fields: {', '.join(missing)}")
        return cls(
            algorithm=str(data["algorithm"]),
            public_key=str(data["public_key"]),
            signature=str(data["signature"]),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "algorithm": self.algorithm,
            "public_key": self.public_key,
            "signature": self.signature,
        }


SignatureLike = Union[Signature, Mapping[str, Any]]


def _coerce_signatures(signatures: Iterable[SignatureLike]) -> Tuple[Signature, ...]:
    return tuple(s if isinstance(s, Signature) else Signature.from_dict(s) for s in signatures)


@dataclass(frozen=True, init=False)
class Receipt:
    """
    Canonical body, its CID, and attached signatures.

    The body is held as a private copy and every read of ``body`` returns a
    fresh copy, so editing what a caller gets back cannot change the receipt.
    """
    _body: Any
    content_cid: str
    signatures: Tuple[Signature, ...] = ()

    def __init__(self, body: Any, content_cid: str, signatures: Iterable[SignatureLike] = ()):
        object.__setattr__(self, "_body", copy.deepcopy(body))
        object.__setattr__(self, "content_cid", content_cid)
        object.__setattr__(self, "signatures", _coerce_signatures(signatures))

    @property
    def body(self) -> Any:
        return copy.deepcopy(self._body)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "body": self.body,
            "receipt": {
                "content_cid": self.content_cid,
                "signatures": [s.to_dict() for s in self.signatures],
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Receipt":
        if not isinstance(data, Mapping) or "body" not in data or not isinstance(data.get("receipt"), Mapping):
            raise ValidateError("receipt must be an object with 'body' and 'receipt'")
        envelope = data["receipt"]
        if "content_cid" not in envelope:
            raise ValidateError("receipt is missing content_cid")
        return cls(
            body=data["body"],
            content_cid=str(envelope["content_cid"]),
            signatures=envelope.get("signatures") or (),
        )

    def with_signatures(self, extra: Iterable[SignatureLike]) -> "Receipt":
        """Return a copy with extra signatures appended; the CID is unchanged."""
        return Receipt(
            body=self._body,
            content_cid=self.content_cid,
            signatures=self.signatures + tuple(extra),
        )

    def verify(self) -> None:
        verify_receipt(self)


def emit(body: Any, signatures: Iterable[SignatureLike] = ()) -> Receipt:
    """Canonicalize body and package it as a receipt. Raises NormalizeError."""
    canon = canonicalize(body)
    receipt = Receipt(body=canon.value, content_cid=canon.cid, signatures=signatures)
    logger.debug("Emitted receipt", content_cid=canon.cid, signatures=len(receipt.signatures))
    return receipt


def verify_receipt(receipt: Union[Receipt, Mapping[str, Any]]) -> Receipt:
    """Recompute the body CID and compare. Raises CidMismatchError."""
    if not isinstance(receipt, Receipt):
        receipt = Receipt.from_dict(receipt)
    actual = canonicalize(receipt._body).cid
    if actual != receipt.content_cid:
        logger.warning("Receipt CID mismatch", expected=receipt.content_cid, actual=actual)
        raise CidMismatchError(receipt.content_cid, actual, what="receipt body")
    return receipt
