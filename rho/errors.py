"""
Rho error taxonomy.

Every failure raised by the core belongs to exactly one kind:

    Normalize    non-integer number, NFC key collision, other canonical rule violations
    Validate     schema or structural validation failure
    Policy       malformed policy grammar
    Compile      invariant violation or malformed chip specification
    Exec         missing or malformed bytecode, unsupported version, bad opcode input
    CasMiss      CID not present in the content store
    CidMismatch  a recomputed CID disagrees with the expected one

Errors carry structured context (offending field, JSON path, expected/actual CID)
so callers can diagnose a failure without re-running internals. Nothing in the
core retries; every operation is a pure function of its inputs.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class RhoError(Exception):
    """Base exception for all rho failures."""

    kind = "rho"

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Structured form for logs and API boundaries."""
        out: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.context:
            out["context"] = dict(self.context)
        return out


class NormalizeError(RhoError):
    """A value cannot be reduced to canonical form."""

    kind = "normalize"

    def __init__(self, message: str, path: str = "$", **context: Any):
        self.path = path
        super().__init__(f"{path}: {message}", path=path, **context)


class ValidateError(RhoError):
    """Schema or structural validation failure."""

    kind = "validate"


class PolicyError(RhoError):
    """Malformed policy expression."""

    kind = "policy"

    def __init__(self, message: str, position: Optional[int] = None, **context: Any):
        self.position = position
        if position is not None:
            message = f"{message} at offset {position}"
        super().__init__(message, position=position, **context)


class CompileError(RhoError):
    """Chip specification could not be compiled."""

    kind = "compile"

    def __init__(self, message: str, field: Optional[str] = None, **context: Any):
        self.field = field
        if field:
            message = f"{field}: {message}"
        super().__init__(message, field=field, **context)


class ExecError(RhoError):
    """Bytecode execution failure."""

    kind = "exec"


class BytecodeNotFoundError(ExecError):
    """The requested bytecode CID is not in the store."""

    def __init__(self, cid: str):
        self.cid = cid
        super().__init__(f"bytecode not found in CAS: {cid}", cid=cid)


class MalformedBytecodeError(ExecError):
    """Bytecode is truncated, too short, or carries an unsupported version."""


class CasError(RhoError):
    """Content store failure."""

    kind = "cas"


class CidNotFoundError(CasError):
    """CID not present in the store."""

    kind = "cas_miss"

    def __init__(self, cid: str):
        self.cid = cid
        super().__init__(f"CID not found: {cid}", cid=cid)


class CidMismatchError(RhoError):
    """Recomputed CID disagrees with the expected one."""

    kind = "cid_mismatch"

    def __init__(self, expected: str, actual: str, what: str = ""):
        self.expected = expected
        self.actual = actual
        prefix = f"{what}: " if what else ""
        super().__init__(
            f"{prefix}CID mismatch: expected {expected}, got {actual}",
            expected=expected,
            actual=actual,
            what=what or None,
        )
