"""
Chip specification compiler.

Turns a declarative chip specification into TLV bytecode (see rho.bytecode):

    spec → canonicalize → re-parse → validate → TLV → rb_cid

Two specifications that differ only in object key order or in null-valued
fields compile to byte-identical bytecode. Any canonicalization or invariant
failure raises CompileError; no partial bytecode is ever returned.

Wire form of a chip specification:

    {
      "chip": "rho.normalize",
      "version": "1.0.0",
      "type": "base" | "module" | "product",
      "inputs": {...},
      "outputs": {...},
      "determinism": "spec→rb",      (optional)
      "opcode": 2,                   (required for base chips)
      "wiring": [{...}, ...]         (optional, ordered)
    }
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Union

from rho.bytecode import MAX_FIELD, Bytecode
from rho.core import b64url_encode, canonicalize, cid_to_bytes, compute_cid, parse_canonical
from rho.errors import CidMismatchError, CompileError, NormalizeError
from rho.observability import Layer, get_logger, timed_operation

if TYPE_CHECKING:
    from rho.cas import ContentStore

logger = get_logger("compiler", Layer.COMPILER)


class ChipKind(Enum):
    """Chip categories."""
    BASE = "base"
    MODULE = "module"
    PRODUCT = "product"


@dataclass(frozen=True)
class ChipSpec:
    """A named, versioned unit of deterministic computation."""
    name: str
    version: str
    kind: ChipKind
    inputs: Dict[str, Any] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    determinism: Optional[str] = None
    opcode: Optional[int] = None
    wiring: Optional[List[Any]] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ChipSpec":
        """Build from wire form. Unknown keys are ignored."""
        if not isinstance(data, Mapping):
            raise CompileError(f"chip spec must be an object, got {type(data).__name__}")

        for key in ("chip", "version", "type"):
            if key not in data or data[key] is None:
                raise CompileError("missing required field", field=key)
            if not isinstance(data[key], str):
                raise CompileError(f"must be a string, got {type(data[key]).__name__}", field=key)

        try:
            kind = ChipKind(data["type"])
        except ValueError:
            allowed = ", ".join(k.value for k in ChipKind)
            raise CompileError(f"unknown chip type {data['type']!r} (expected one of {allowed})", field="type") from None

        inputs = data.get("inputs")
        outputs = data.get("outputs")
        for key, value in (("inputs", inputs), ("outputs", outputs)):
            if not isinstance(value, Mapping):
                raise CompileError(f"must be an object, got {type(value).__name__}", field=key)

        determinism = data.get("determinism")
        if determinism is not None and not isinstance(determinism, str):
            raise CompileError("must be a string", field="determinism")

        opcode = data.get("opcode")
        if opcode is not None:
            if isinstance(opcode, bool) or not isinstance(opcode, int):
                raise CompileError(f"must be an integer, got {type(opcode).__name__}", field="opcode")
            if not 0 <= opcode <= MAX_FIELD:
                raise CompileError(f"must fit in one byte, got {opcode}", field="opcode")

        wiring = data.get("wiring")
        if wiring is not None and not isinstance(wiring, (list, tuple)):
            raise CompileError(f"must be a list, got {type(wiring).__name__}", field="wiring")

        return cls(
            name=data["chip"],
            version=data["version"],
            kind=kind,
            inputs=dict(inputs),
            outputs=dict(outputs),
            determinism=determinism,
            opcode=opcode,
            wiring=list(wiring) if wiring is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Wire form; absent optional fields are omitted."""
        out: Dict[str, Any] = {
            "chip": self.name,
            "version": self.version,
            "type": self.kind.value,
            "inputs": self.inputs,
            "outputs": self.outputs,
        }
        if self.determinism is not None:
            out["determinism"] = self.determinism
        if self.opcode is not None:
            out["opcode"] = self.opcode
        if self.wiring is not None:
            out["wiring"] = self.wiring
        return out


@dataclass(frozen=True)
class CompileOutput:
    """Compiled bytecode and its identity."""
    bytecode: bytes
    rb_cid: str
    spec_cid: str

    def to_dict(self) -> Dict[str, str]:
        return {"rb_bytes": b64url_encode(self.bytecode), "rb_cid": self.rb_cid}


def validate_chip_spec(spec: ChipSpec) -> None:
    """Structural invariants checked on the canonical spec."""
    if not spec.name:
        raise CompileError("chip name cannot be empty", field="chip")
    if spec.kind is ChipKind.BASE and spec.opcode is None:
        raise CompileError("base chips must have an opcode", field="opcode")
    if len(spec.inputs) > MAX_FIELD:
        raise CompileError(f"at most {MAX_FIELD} inputs, got {len(spec.inputs)}", field="inputs")
    if spec.wiring is not None and len(spec.wiring) > MAX_FIELD:
        raise CompileError(f"at most {MAX_FIELD} wiring entries, got {len(spec.wiring)}", field="wiring")


def _as_spec(spec: Union[ChipSpec, Mapping[str, Any]]) -> ChipSpec:
    if isinstance(spec, ChipSpec):
        return spec
    return ChipSpec.from_dict(spec)


@timed_operation(logger, "compile")
def compile_chip(spec: Union[ChipSpec, Mapping[str, Any]]) -> CompileOutput:
    """Compile a chip specification to TLV bytecode.

    Steps:
    1. Canonicalize the wire form of the spec
    2. Re-parse the canonical bytes into a normalized spec
    3. Validate invariants (name, opcode for base chips, field widths)
    4. Encode TLV, embedding the spec CID and one CID per wiring entry, in
       wiring order
    5. rb_cid = CID of the bytecode bytes
    """
    try:
        canon = canonicalize(_as_spec(spec).to_dict())
    except NormalizeError as e:
        raise CompileError(f"chip spec is not canonicalizable: {e}", path=e.path) from e

    normalized = ChipSpec.from_dict(parse_canonical(canon.data))
    validate_chip_spec(normalized)

    wiring_digests = []
    for i, entry in enumerate(normalized.wiring or []):
        try:
            entry_cid = canonicalize(entry).cid
        except NormalizeError as e:
            raise CompileError(f"wiring entry {i} is not canonicalizable: {e}", field="wiring") from e
        wiring_digests.append(cid_to_bytes(entry_cid))

    record = Bytecode(
        opcode=normalized.opcode if normalized.opcode is not None else 0,
        spec_digest=cid_to_bytes(canon.cid),
        input_count=len(normalized.inputs),
        wiring=tuple(wiring_digests),
    )
    bytecode = record.encode()
    rb_cid = compute_cid(bytecode)

    logger.debug(
        "Compiled chip",
        chip=normalized.name,
        version=normalized.version,
        spec_cid=canon.cid,
        rb_cid=rb_cid,
        size=len(bytecode),
    )
    return CompileOutput(bytecode=bytecode, rb_cid=rb_cid, spec_cid=canon.cid)


def compile_and_store(spec: Union[ChipSpec, Mapping[str, Any]], cas: "ContentStore") -> CompileOutput:
    """Compile then persist the bytecode in the store."""
    out = compile_chip(spec)
    stored = cas.put(out.bytecode)
    if stored != out.rb_cid:
        raise CidMismatchError(out.rb_cid, stored, what="bytecode")
    return out
