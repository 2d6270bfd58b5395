"""
Rho: deterministic canonicalization, content addressing and chip bytecode.

Every value is reduced to a single canonical byte encoding and identified by
the CID of those bytes. Chip specifications compile to compact TLV bytecode
that a small stack machine executes; results are wrapped in receipts whose
identity is the CID of their canonical body.

Modules:
    core         canonicalization and CIDs
    cas          in-memory content-addressable store
    compiler     chip spec to TLV bytecode
    bytecode     TLV encode/decode and opcodes
    executor     bytecode interpreter
    policy       signature policy expressions
    receipt      receipt emission and verification
    validation   JSON Schema validation
    signing      Ed25519 proofs over CIDs
    modules      build/evaluate/publish/ledger/permit/log compositions
    config       layered configuration
    observability structured logging
"""

from rho.cas import ContentStore
from rho.compiler import ChipSpec, CompileOutput, compile_and_store, compile_chip
from rho.core import Canonical, canonical_bytes, canonicalize, canonicalize_json, compute_cid
from rho.errors import (
    BytecodeNotFoundError,
    CasError,
    CidMismatchError,
    CidNotFoundError,
    CompileError,
    ExecError,
    MalformedBytecodeError,
    NormalizeError,
    PolicyError,
    RhoError,
    ValidateError,
)
from rho.executor import ExecOutput, Executor, execute
from rho.policy import Proof, parse_policy, policy_eval
from rho.receipt import Receipt, Signature, emit, verify_receipt

__version__ = "0.1.0"

__all__ = [
    "BytecodeNotFoundError",
    "Canonical",
    "CasError",
    "ChipSpec",
    "CidMismatchError",
    "CidNotFoundError",
    "CompileError",
    "CompileOutput",
    "ContentStore",
    "ExecError",
    "ExecOutput",
    "Executor",
    "MalformedBytecodeError",
    "NormalizeError",
    "PolicyError",
    "Proof",
    "Receipt",
    "RhoError",
    "Signature",
    "ValidateError",
    "canonical_bytes",
    "canonicalize",
    "canonicalize_json",
    "compile_and_store",
    "compile_chip",
    "compute_cid",
    "emit",
    "execute",
    "parse_policy",
    "policy_eval",
    "verify_receipt",
]
