"""
Receipt emission and Ed25519 signing tests.

Run with: pytest tests/test_receipt_signing.py -v
"""

import pytest

from rho.core import b64url_decode, b64url_encode, canonicalize, compute_cid
from rho.errors import CidMismatchError, NormalizeError, ValidateError
from rho.policy import Proof, policy_eval
from rho.receipt import Receipt, Signature, emit, verify_receipt
from rho.signing import generate_keypair, load_private_key, sign_cid, verify_proof


class TestEmit:

    def test_identity(self):
        """The receipt CID is the CID of the canonical body."""
        receipt = emit({"b": 1, "a": None})
        assert receipt.body == {"b": 1}
        assert receipt.content_cid == canonicalize({"b": 1}).cid
        assert receipt.signatures == ()

    def test_same_body_same_cid(self):
        assert emit({"x": [1, 2]}).content_cid == emit({"x": [1, 2]}).content_cid

    def test_signatures_recorded_not_checked(self):
        sig = {"algorithm": "ed25519", "public_key": "bogus", "signature": "bogus"}
        receipt = emit("body", [sig])
        assert receipt.signatures == (Signature.from_dict(sig),)

    def test_signatures_do_not_change_cid(self):
        plain = emit({"k": "v"})
        signed = emit({"k": "v"}, [Signature("ed25519", "pk", "sig")])
        assert plain.content_cid == signed.content_cid

    def test_non_canonical_body(self):
        with pytest.raises(NormalizeError):
            emit({"x": 1.5})

    def test_malformed_signature(self):
        with pytest.raises(ValidateError):
            emit("body", [{"algorithm": "ed25519"}])


class TestWireForm:

    def test_to_dict(self):
        receipt = emit({"a": 1}, [Signature("ed25519", "pk", "sig")])
        assert receipt.to_dict() == {
            "body": {"a": 1},
            "receipt": {
                "content_cid": canonicalize({"a": 1}).cid,
                "signatures": [{"algorithm": "ed25519", "public_key": "pk", "signature": "sig"}],
            },
        }

    def test_from_dict_round_trip(self):
        receipt = emit([1, 2, 3], [Signature("mldsa3", "pk", "sig")])
        assert Receipt.from_dict(receipt.to_dict()) == receipt

    def test_from_dict_rejects_bad_shape(self):
        with pytest.raises(ValidateError):
            Receipt.from_dict({"body": 1})
        with pytest.raises(ValidateError):
            Receipt.from_dict({"body": 1, "receipt": {}})

    def test_with_signatures(self):
        receipt = emit("x")
        extended = receipt.with_signatures([Signature("ed25519", "pk", "s")])
        assert extended.content_cid == receipt.content_cid
        assert len(extended.signatures) == 1
        assert receipt.signatures == ()


class TestVerify:

    def test_verify_ok(self):
        receipt = emit({"a": 1})
        assert verify_receipt(receipt) is receipt
        receipt.verify()

    def test_verify_dict(self):
        assert verify_receipt(emit("x").to_dict()).content_cid == canonicalize("x").cid

    def test_body_edits_do_not_reach_receipt(self):
        source = {"a": 1, "items": [1, 2]}
        receipt = emit(source)
        view = receipt.body
        view["a"] = 2
        view["items"].append(3)
        source["a"] = 3
        assert receipt.body == {"a": 1, "items": [1, 2]}
        receipt.verify()

    def test_constructor_copies_body(self):
        body = {"a": 1}
        receipt = Receipt(body=body, content_cid=canonicalize(body).cid)
        body["a"] = 2
        receipt.verify()

    def test_tampered_body(self):
        receipt = emit({"a": 1})
        forged = Receipt(body={"a": 2}, content_cid=receipt.content_cid)
        with pytest.raises(CidMismatchError) as exc:
            verify_receipt(forged)
        assert exc.value.expected == receipt.content_cid
        assert exc.value.actual == canonicalize({"a": 2}).cid


class TestSigning:

    def test_sign_and_verify(self):
        priv, pub = generate_keypair()
        cid = compute_cid(b"message")
        proof = sign_cid(priv, cid)
        assert proof.algorithm == "ed25519"
        assert proof.public_key == pub
        assert proof.message_cid == cid
        assert len(b64url_decode(proof.signature)) == 64
        assert verify_proof(proof)

    def test_wrong_message(self):
        priv, _ = generate_keypair()
        proof = sign_cid(priv, compute_cid(b"one"))
        forged = Proof(
            algorithm=proof.algorithm,
            public_key=proof.public_key,
            signature=proof.signature,
            message_cid=compute_cid(b"two"),
        )
        assert not verify_proof(forged)

    def test_wrong_key(self):
        priv, _ = generate_keypair()
        _, other_pub = generate_keypair()
        proof = sign_cid(priv, compute_cid(b"m"))
        swapped = Proof("ed25519", other_pub, proof.signature, proof.message_cid)
        assert not verify_proof(swapped)

    def test_garbage_encoding(self):
        assert not verify_proof(Proof("ed25519", "!!", "!!", compute_cid(b"m")))
        assert not verify_proof(Proof("ed25519", b64url_encode(b"\x00" * 32), b64url_encode(b"short"), "c"))

    def test_other_algorithms_unverifiable(self):
        assert not verify_proof(Proof("mldsa3", "pk", "sig", compute_cid(b"m")))

    def test_sign_rejects_non_cid(self):
        priv, _ = generate_keypair()
        with pytest.raises(ValidateError):
            sign_cid(priv, "hello")

    def test_load_private_key(self):
        with pytest.raises(ValidateError):
            load_private_key(b64url_encode(b"\x01" * 5))
        key = load_private_key(b64url_encode(b"\x01" * 32))
        proof = sign_cid(key, compute_cid(b"m"))
        assert verify_proof(proof)

    def test_signed_receipt_satisfies_policy(self):
        """A real signature attached to a receipt satisfies an ed25519 policy."""
        priv, _ = generate_keypair()
        receipt = emit({"result": "ok"})
        proof = sign_cid(priv, receipt.content_cid)
        signed = receipt.with_signatures([proof.to_signature()])
        assert signed.content_cid == receipt.content_cid
        assert policy_eval("hybrid-and(ed25519,true)", [proof])
        assert not policy_eval("hybrid-and(ed25519,mldsa3)", [proof])
