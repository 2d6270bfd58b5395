"""
Rho bytecode (TLV) format.

A compiled chip is a compact, byte-exact record:

    offset  field                                   size
    0       format version (0x01)                   1
    1       opcode                                  1
    2       length of source-spec CID digest        1
    3..     source-spec CID digest                  variable (32)
    next    input field count                       1
    next    output field count (0x01)               1
    next    wiring-entry count                      1
    next..  wiring-entry CID digests                32 each

Bytecode is immutable once encoded and identified by the CID of its own bytes.

Opcodes:

    0x02  NORMALIZE    return the canonical input
    0x03  VALIDATE     validate input.value against schema input.schema_cid
    0x04  POLICY_EVAL  evaluate input.policy against input.proofs
    0x05  COMPILE      compile input.spec
    0x06  EXEC         execute input.rb_cid with input.inputs
    other             echo the canonical input

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Tuple

from rho.core import DIGEST_SIZE, cid_from_bytes, compute_cid
from rho.errors import MalformedBytecodeError

FORMAT_VERSION = 0x01
OUTPUT_COUNT = 0x01
MIN_LENGTH = 2
MAX_FIELD = 0xFF


class Opcode(IntEnum):
    """Reserved chip opcodes."""
    NORMALIZE = 0x02
    VALIDATE = 0x03
    POLICY_EVAL = 0x04
    COMPILE = 0x05
    EXEC = 0x06


def opcode_name(value: int) -> str:
    try:
        return Opcode(value).name
    except ValueError:
        return f"ECHO(0x{value:02x})"


def read_header(data: bytes) -> Tuple[int, int]:
    """
    Return (version, opcode) from the two-byte fixed header.

    This is all the executor needs to dispatch; the trailing TLV fields carry
    traceability only. Raises MalformedBytecodeError.
    """
    if len(data) < MIN_LENGTH:
        raise MalformedBytecodeError(f"bytecode too short: {len(data)} bytes", length=len(data))
    version = data[0]
    if version != FORMAT_VERSION:
        raise MalformedBytecodeError(f"unsupported version: {version}", version=version)
    return version, data[1]


@dataclass(frozen=True)
class Bytecode:
    """Decoded TLV record."""
    opcode: int
    spec_digest: bytes
    input_count: int
    output_count: int = OUTPUT_COUNT
    wiring: Tuple[bytes, ...] = field(default_factory=tuple)
    version: int = FORMAT_VERSION

    @property
    def spec_cid(self) -> str:
        return cid_from_bytes(self.spec_digest)

    @property
    def wiring_cids(self) -> List[str]:
        return [cid_from_bytes(d) for d in self.wiring]

    def encode(self) -> bytes:
        """Serialize to TLV bytes."""
        for name, value in (
            ("version", self.version),
            ("opcode", self.opcode),
            ("input_count", self.input_count),
            ("output_count", self.output_count),
            ("wiring count", len(self.wiring)),
            ("spec digest length", len(self.spec_digest)),
        ):
            if not 0 <= value <= MAX_FIELD:
                raise ValueError(f"{name} does not fit in one byte: {value}")
        for d in self.wiring:
            if len(d) != DIGEST_SIZE:
                raise ValueError(f"wiring digest must be {DIGEST_SIZE} bytes, got {len(d)}")

        out = bytearray()
        out.append(self.version)
        out.append(self.opcode)
        out.append(len(self.spec_digest))
        out.extend(self.spec_digest)
        out.append(self.input_count)
        out.append(self.output_count)
        out.append(len(self.wiring))
        for d in self.wiring:
            out.extend(d)
        return bytes(out)

    @classmethod
    def decode(cls, data: bytes) -> "Bytecode":
        """Parse the complete TLV record strictly. Raises MalformedBytecodeError."""
        data = bytes(data)
        version, opcode = read_header(data)

        pc = MIN_LENGTH

        def take(n: int, what: str) -> bytes:
            nonlocal pc
            end = pc + n
            if end > len(data):
                raise MalformedBytecodeError(
                    f"truncated bytecode reading {what} at offset {pc}", offset=pc
                )
            chunk = data[pc:end]
            pc = end
            return chunk

        spec_len = take(1, "spec CID length")[0]
        spec_digest = take(spec_len, "spec CID")
        if spec_len != DIGEST_SIZE:
            raise MalformedBytecodeError(
                f"spec CID digest must be {DIGEST_SIZE} bytes, got {spec_len}"
            )
        input_count = take(1, "input count")[0]
        output_count = take(1, "output count")[0]
        wiring_count = take(1, "wiring count")[0]
        wiring = tuple(take(DIGEST_SIZE, f"wiring entry {i}") for i in range(wiring_count))

        if pc != len(data):
            raise MalformedBytecodeError(
                f"{len(data) - pc} trailing bytes after wiring", offset=pc
            )

        return cls(
            opcode=opcode,
            spec_digest=spec_digest,
            input_count=input_count,
            output_count=output_count,
            wiring=wiring,
            version=version,
        )

    def cid(self) -> str:
        return compute_cid(self.encode())

    def describe(self) -> Dict[str, Any]:
        """Human-readable view, the counterpart of a disassembly listing."""
        return {
            "version": self.version,
            "opcode": self.opcode,
            "opcode_name": opcode_name(self.opcode),
            "spec_cid": self.spec_cid,
            "input_count": self.input_count,
            "output_count": self.output_count,
            "wiring": self.wiring_cids,
        }
