"""
TLV bytecode and chip compiler tests.

Run with: pytest tests/test_bytecode_compiler.py -v
"""

import pytest

from rho.bytecode import FORMAT_VERSION, Bytecode, Opcode, opcode_name
from rho.compiler import ChipKind, ChipSpec, compile_and_store, compile_chip
from rho.core import b64url_decode, canonicalize, cid_to_bytes, compute_cid
from rho.errors import CompileError, ExecError, MalformedBytecodeError


NORMALIZE_SPEC = {
    "chip": "rho.normalize",
    "version": "1.0.0",
    "type": "base",
    "inputs": {"value": {"type": "any"}},
    "outputs": {"value": {"type": "any"}},
    "determinism": "canonical",
    "opcode": 2,
}


class TestBytecodeLayout:
    """Byte-exact TLV layout."""

    def test_encode_layout(self):
        digest = bytes(range(32))
        wire = bytes([0xAA] * 32)
        record = Bytecode(opcode=3, spec_digest=digest, input_count=2, wiring=(wire,))
        data = record.encode()
        assert data[0] == FORMAT_VERSION
        assert data[1] == 3
        assert data[2] == 32
        assert data[3:35] == digest
        assert data[35] == 2
        assert data[36] == 1
        assert data[37] == 1
        assert data[38:70] == wire
        assert len(data) == 70

    def test_decode_round_trip(self):
        record = Bytecode(opcode=6, spec_digest=b"\x01" * 32, input_count=0)
        assert Bytecode.decode(record.encode()) == record

    def test_cid(self):
        record = Bytecode(opcode=2, spec_digest=b"\x02" * 32, input_count=1)
        assert record.cid() == compute_cid(record.encode())

    def test_too_short(self):
        with pytest.raises(MalformedBytecodeError):
            Bytecode.decode(b"\x01")

    def test_malformed_is_exec_error(self):
        with pytest.raises(ExecError):
            Bytecode.decode(b"")

    def test_unsupported_version(self):
        with pytest.raises(MalformedBytecodeError) as exc:
            Bytecode.decode(b"\x02\x02")
        assert "2" in str(exc.value)
        assert exc.value.context["version"] == 2

    def test_truncated_digest(self):
        data = Bytecode(opcode=2, spec_digest=b"\x00" * 32, input_count=0).encode()
        with pytest.raises(MalformedBytecodeError):
            Bytecode.decode(data[:20])

    def test_truncated_wiring(self):
        data = Bytecode(opcode=2, spec_digest=b"\x00" * 32, input_count=0, wiring=(b"\x01" * 32,)).encode()
        with pytest.raises(MalformedBytecodeError):
            Bytecode.decode(data[:-1])

    def test_trailing_bytes(self):
        data = Bytecode(opcode=2, spec_digest=b"\x00" * 32, input_count=0).encode()
        with pytest.raises(MalformedBytecodeError):
            Bytecode.decode(data + b"\x00")

    def test_wrong_digest_length(self):
        data = bytes([1, 2, 4, 0, 0, 0, 0, 0, 1, 0])
        with pytest.raises(MalformedBytecodeError):
            Bytecode.decode(data)

    def test_encode_range_checks(self):
        with pytest.raises(ValueError):
            Bytecode(opcode=256, spec_digest=b"\x00" * 32, input_count=0).encode()
        with pytest.raises(ValueError):
            Bytecode(opcode=2, spec_digest=b"\x00" * 32, input_count=0, wiring=(b"\x00",)).encode()

    def test_opcode_names(self):
        assert opcode_name(Opcode.VALIDATE) == "VALIDATE"
        assert opcode_name(0x42) == "ECHO(0x42)"

    def test_describe(self):
        record = Bytecode(opcode=4, spec_digest=b"\x07" * 32, input_count=1)
        info = record.describe()
        assert info["opcode_name"] == "POLICY_EVAL"
        assert cid_to_bytes(info["spec_cid"]) == b"\x07" * 32


class TestChipSpec:

    def test_from_dict(self):
        spec = ChipSpec.from_dict(NORMALIZE_SPEC)
        assert spec.name == "rho.normalize"
        assert spec.kind is ChipKind.BASE
        assert spec.opcode == 2

    def test_to_dict_omits_absent_fields(self):
        spec = ChipSpec(name="m", version="1", kind=ChipKind.MODULE)
        assert spec.to_dict() == {"chip": "m", "version": "1", "type": "module", "inputs": {}, "outputs": {}}

    @pytest.mark.parametrize("field,value", [
        ("chip", None),
        ("version", 1),
        ("type", "widget"),
        ("inputs", []),
        ("opcode", "2"),
        ("opcode", True),
        ("opcode", 300),
        ("wiring", "x"),
    ])
    def test_invalid_fields(self, field, value):
        data = dict(NORMALIZE_SPEC, **{field: value})
        with pytest.raises(CompileError) as exc:
            compile_chip(data)
        assert exc.value.field == field

    def test_missing_required(self):
        data = dict(NORMALIZE_SPEC)
        del data["version"]
        with pytest.raises(CompileError):
            compile_chip(data)


class TestCompiler:

    def test_layout_from_spec(self):
        out = compile_chip(NORMALIZE_SPEC)
        record = Bytecode.decode(out.bytecode)
        assert record.opcode == Opcode.NORMALIZE
        assert record.input_count == 1
        assert record.output_count == 1
        assert record.wiring == ()
        assert record.spec_cid == canonicalize(NORMALIZE_SPEC).cid
        assert out.spec_cid == record.spec_cid
        assert out.rb_cid == compute_cid(out.bytecode)

    def test_deterministic_across_key_order(self):
        """Reordered keys and null fields compile to identical bytecode."""
        reordered = dict(reversed(list(NORMALIZE_SPEC.items())))
        reordered["wiring"] = None
        a = compile_chip(NORMALIZE_SPEC)
        b = compile_chip(reordered)
        assert a.bytecode == b.bytecode
        assert a.rb_cid == b.rb_cid

    def test_accepts_chip_spec_instance(self):
        assert compile_chip(ChipSpec.from_dict(NORMALIZE_SPEC)).rb_cid == compile_chip(NORMALIZE_SPEC).rb_cid

    def test_module_without_opcode(self):
        spec = {"chip": "m", "version": "1", "type": "module", "inputs": {}, "outputs": {}}
        assert Bytecode.decode(compile_chip(spec).bytecode).opcode == 0

    def test_base_requires_opcode(self):
        spec = dict(NORMALIZE_SPEC)
        del spec["opcode"]
        with pytest.raises(CompileError) as exc:
            compile_chip(spec)
        assert exc.value.field == "opcode"

    def test_empty_name(self):
        with pytest.raises(CompileError):
            compile_chip(dict(NORMALIZE_SPEC, chip=""))

    def test_float_in_spec(self):
        with pytest.raises(CompileError):
            compile_chip(dict(NORMALIZE_SPEC, inputs={"x": 1.5}))

    def test_wiring_order_matters(self):
        a = {"chip": "a", "version": "1"}
        b = {"chip": "b", "version": "1"}
        spec = {"chip": "m", "version": "1", "type": "module", "inputs": {}, "outputs": {}}
        ab = compile_chip(dict(spec, wiring=[a, b]))
        ba = compile_chip(dict(spec, wiring=[b, a]))
        assert ab.rb_cid != ba.rb_cid
        record = Bytecode.decode(ab.bytecode)
        assert record.wiring_cids == [canonicalize(a).cid, canonicalize(b).cid]

    def test_too_many_inputs(self):
        inputs = {f"f{i}": {} for i in range(256)}
        with pytest.raises(CompileError):
            compile_chip(dict(NORMALIZE_SPEC, inputs=inputs))

    def test_compile_output_dict(self):
        out = compile_chip(NORMALIZE_SPEC)
        wire = out.to_dict()
        assert wire["rb_cid"] == out.rb_cid
        assert b64url_decode(wire["rb_bytes"]) == out.bytecode

    def test_compile_and_store(self, cas):
        out = compile_and_store(NORMALIZE_SPEC, cas)
        assert cas.get(out.rb_cid) == out.bytecode
