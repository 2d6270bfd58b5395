"""Ed25519 attestations over CIDs.

The message signed is the UTF-8 text of a CID, so a proof binds a key to one
canonical value. Public keys and signatures are raw bytes encoded as unpadded
base64url.

The core never verifies signatures; these helpers are for callers that want
real proofs to feed into policy evaluation or attach to receipts.
"""

from __future__ import annotations

from typing import Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from rho.core import b64url_decode, b64url_encode, is_valid_cid
from rho.errors import ValidateError
from rho.policy import Proof

ED25519 = "ed25519"


def generate_keypair() -> Tuple[Ed25519PrivateKey, str]:
    """Return a fresh private key and its base64url public key."""
    priv = Ed25519PrivateKey.generate()
    return priv, public_key_b64(priv)


def public_key_b64(private_key: Ed25519PrivateKey) -> str:
    pub_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return b64url_encode(pub_bytes)


def load_private_key(raw_b64: str) -> Ed25519PrivateKey:
    """Load a raw 32-byte private key encoded as base64url."""
    try:
        raw = b64url_decode(raw_b64)
        return Ed25519PrivateKey.from_private_bytes(raw)
    except ValueError as e:
        raise ValidateError(f"invalid Ed25519 private key: {e}") from e


def sign_cid(private_key: Ed25519PrivateKey, cid: str) -> Proof:
    """Sign the CID text and return an ``ed25519`` proof."""
    if not is_valid_cid(cid):
        raise ValidateError(f"not a CID: {cid!r}")
    sig = private_key.sign(cid.encode("utf-8"))
    return Proof(
        algorithm=ED25519,
        public_key=public_key_b64(private_key),
        signature=b64url_encode(sig),
        message_cid=cid,
    )


def verify_proof(proof: Proof) -> bool:
    """Check an ``ed25519`` proof. Other algorithms are reported as unverifiable."""
    if proof.algorithm.lower() != ED25519:
        return False
    try:
        pub = Ed25519PublicKey.from_public_bytes(b64url_decode(proof.public_key))
        sig = b64url_decode(proof.signature)
    except ValueError:
        return False
    if len(sig) != 64:
        return False
    try:
        pub.verify(sig, proof.message_cid.encode("utf-8"))
    except InvalidSignature:
        return False
    return True
