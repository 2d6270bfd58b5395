"""
Module composition tests: build, evaluate, publish, ledger, permit, log.

Run with: pytest tests/test_modules.py -v
"""

import pytest

from rho.bytecode import Bytecode, Opcode
from rho.core import canonicalize, compute_cid
from rho.errors import CidNotFoundError, CompileError, PolicyError, ValidateError
from rho.modules import Ledger, build, evaluate, log_entry, permit, publish
from rho.receipt import emit
from rho.signing import generate_keypair, sign_cid


SPEC = {
    "chip": "rho.normalize",
    "version": "1.0.0",
    "type": "base",
    "inputs": {"value": {}},
    "outputs": {"value": {}},
    "opcode": 2,
}

OWNER = compute_cid(b"owner-public-key")


class TestBuildAndEvaluate:

    def test_build(self, cas):
        spec_cid = cas.put_value(SPEC).cid
        receipt = build(spec_cid, cas)
        rb_cid = receipt.body["rb_cid"]
        assert receipt.body["spec_cid"] == spec_cid
        assert Bytecode.decode(cas.get(rb_cid)).opcode == Opcode.NORMALIZE

    def test_build_deterministic(self, cas):
        spec_cid = cas.put_value(SPEC).cid
        assert build(spec_cid, cas).content_cid == build(spec_cid, cas).content_cid

    def test_build_missing_spec(self, cas):
        with pytest.raises(CidNotFoundError):
            build(compute_cid(b"missing"), cas)

    def test_build_invalid_spec(self, cas):
        spec_cid = cas.put_value({"chip": "x"}).cid
        with pytest.raises(CompileError):
            build(spec_cid, cas)

    def test_evaluate(self, cas):
        rb_cid = build(cas.put_value(SPEC).cid, cas).body["rb_cid"]
        receipt = evaluate(rb_cid, {"b": 1, "a": 2}, cas)
        assert receipt.body == {
            "body": {"a": 2, "b": 1},
            "content_cid": canonicalize({"a": 2, "b": 1}).cid,
            "rb_cid": rb_cid,
        }


class TestPublish:

    def test_publish(self, cas):
        receipt = publish(SPEC, OWNER, cas)
        chip_cid = receipt.body["chip_cid"]
        assert chip_cid == canonicalize(SPEC).cid
        assert receipt.body["owner_cid"] == OWNER
        assert cas.get_value(chip_cid) == canonicalize(SPEC).value

    def test_publish_deterministic(self, cas):
        assert publish(SPEC, OWNER, cas).content_cid == publish(SPEC, OWNER, cas).content_cid

    def test_publish_invalid(self, cas):
        with pytest.raises(ValidateError) as exc:
            publish({"chip": "test.chip"}, OWNER, cas)
        assert "version" in str(exc.value)

    def test_publish_bad_type(self, cas):
        with pytest.raises(ValidateError):
            publish(dict(SPEC, type="widget"), OWNER, cas)


class TestLedger:

    def test_append_chains_entries(self, cas):
        ledger = Ledger(cas)
        assert ledger.head is None
        first = ledger.append(emit({"n": 1}))
        second = ledger.append(emit({"n": 2}))
        assert ledger.head == second
        assert len(ledger) == 2

        entries = ledger.entries()
        assert [e.seq for e in entries] == [0, 1]
        assert entries[0].prev is None
        assert entries[1].prev == first
        assert ledger.receipt(entries[1]).body == {"n": 2}

    def test_entry_body(self, cas):
        ledger = Ledger(cas)
        receipt = emit("x")
        entry_cid = ledger.append(receipt)
        body = cas.get_value(entry_cid)
        assert body == {"receipt_cid": canonicalize(receipt.to_dict()).cid, "seq": 0}

    def test_verify(self, cas):
        ledger = Ledger(cas)
        for i in range(4):
            ledger.append(emit({"i": i}))
        assert ledger.verify() == (True, None)

    def test_verify_detects_tampering(self, cas):
        ledger = Ledger(cas)
        for i in range(3):
            ledger.append(emit({"i": i}))
        target = ledger.entries()[1]
        cas._blobs[target.receipt_cid] = b'{"body":{"i":99}}'
        assert ledger.verify() == (False, 1)

    def test_append_rejects_forged_receipt(self, cas):
        from rho.errors import CidMismatchError
        from rho.receipt import Receipt

        ledger = Ledger(cas)
        forged = Receipt(body={"a": 2}, content_cid=canonicalize({"a": 1}).cid)
        with pytest.raises(CidMismatchError):
            ledger.append(forged)
        assert len(ledger) == 0


class TestPermit:

    def test_permit_with_proof(self, cas):
        policy_cid = cas.put_value({"policy": "hybrid-or(ed25519,mldsa3)", "name": "any-signature"}).cid
        priv, _ = generate_keypair()
        proof = sign_cid(priv, policy_cid)
        assert permit("alice", "read", "doc-1", policy_cid, [proof], cas) is True

    def test_permit_denied(self, cas):
        policy_cid = cas.put_value({"policy": "hybrid-and(ed25519,mldsa3)"}).cid
        proof = {"algorithm": "ed25519", "public_key": "pk", "signature": "s", "message_cid": "c"}
        assert permit("alice", "write", "doc-1", policy_cid, [proof], cas) is False

    def test_permit_missing_policy(self, cas):
        with pytest.raises(CidNotFoundError):
            permit("alice", "read", "doc-1", compute_cid(b"none"), [], cas)

    def test_permit_document_without_policy(self, cas):
        policy_cid = cas.put_value({"rule": "true"}).cid
        with pytest.raises(ValidateError):
            permit("alice", "read", "doc-1", policy_cid, [], cas)

    def test_permit_malformed_policy(self, cas):
        policy_cid = cas.put_value({"policy": "hybrid-or("}).cid
        with pytest.raises(PolicyError):
            permit("alice", "read", "doc-1", policy_cid, [], cas)


class TestLogEntry:

    def test_info(self, cas):
        receipt = log_entry("info", "Test message", None, cas)
        assert receipt.body == {"level": "info", "message": "Test message"}

    def test_with_fields(self, cas):
        fields = {"user_id": "123", "action": "login"}
        receipt = log_entry("warn", "User login attempt", fields, cas)
        assert receipt.body["fields"] == fields

    def test_invalid_level(self, cas):
        with pytest.raises(ValidateError):
            log_entry("debug", "Test message", None, cas)

    def test_fields_must_be_object(self, cas):
        with pytest.raises(ValidateError):
            log_entry("error", "bad", ["not", "an", "object"], cas)

    def test_deterministic(self, cas):
        a = log_entry("info", "Test", None, cas)
        b = log_entry("info", "Test", None, cas)
        assert a.content_cid == b.content_cid
