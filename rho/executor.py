"""
Rho chip executor.

A minimal deterministic stack machine for compiled chips:

    rb_cid ──► CAS.get ──► header ──► canonicalize(inputs)
                                              │
                                   push canonical input
                                              │
                               opcode pops 1, pushes 1
                                              │
                         pop result ──► canonicalize ──► content_cid

Every opcode consumes a fixed arity of canonical values and produces exactly
one. There is no access to wall-clock time, randomness, or any I/O beyond CAS
reads by CID, so identical (rb_cid, canonical inputs) always yield identical
output CIDs.

Failure modes, each with its own error:
    BytecodeNotFoundError   rb_cid absent from the store
    MalformedBytecodeError  shorter than the header, unsupported version
    NormalizeError          inputs cannot be canonicalized
    ExecError               ill-shaped opcode input, call depth or stack exceeded

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from rho.bytecode import Opcode, opcode_name, read_header
from rho.cas import ContentStore
from rho.compiler import compile_chip
from rho.config import ExecutorConfig, get_config
from rho.core import canonicalize
from rho.errors import (
    BytecodeNotFoundError,
    CidNotFoundError,
    CompileError,
    ExecError,
    PolicyError,
)
from rho.observability import Layer, get_logger
from rho.policy import coerce_proofs, parse_policy
from rho.validation import SchemaValidator

logger = get_logger("executor", Layer.EXECUTOR)

# Operand fields that name CAS entries or carry policy text.
_FIELD_TYPES = {"schema_cid": str, "rb_cid": str, "policy": str}


@dataclass(frozen=True)
class ExecOutput:
    """Canonical output body and its CID."""
    body: Any
    content_cid: str

    def to_dict(self) -> Dict[str, Any]:
        return {"body": self.body, "content_cid": self.content_cid}


@dataclass
class ExecutionState:
    """Operand stack for a single chip invocation."""
    opcode: int
    max_stack: int
    depth: int = 0
    stack: List[Any] = field(default_factory=list)

    def push(self, value: Any) -> None:
        if len(self.stack) >= self.max_stack:
            raise ExecError("stack overflow", max_stack=self.max_stack)
        self.stack.append(value)

    def pop(self) -> Any:
        if not self.stack:
            raise ExecError("stack underflow")
        return self.stack.pop()


def _require(operand: Any, opcode: Opcode, *keys: str) -> Mapping[str, Any]:
    if not isinstance(operand, Mapping):
        raise ExecError(
            f"{opcode.name} expects an object input, got {type(operand).__name__}",
            opcode=int(opcode),
        )
    missing = [k for k in keys if k not in operand]
    if missing:
        raise ExecError(
            f"{opcode.name} input is missing {', '.join(missing)}",
            opcode=int(opcode),
            missing=missing,
        )
    for key in keys:
        expected = _FIELD_TYPES.get(key)
        if expected is not None and not isinstance(operand[key], expected):
            raise ExecError(
                f"{opcode.name} input field {key} must be a {expected.__name__}, "
                f"got {type(operand[key]).__name__}",
                opcode=int(opcode),
                field=key,
            )
    return operand


class Executor:
    """
    Executes compiled chips stored in a ContentStore.

    Example:
        cas = ContentStore()
        out = compile_and_store(spec, cas)
        result = Executor(cas).execute(out.rb_cid, {"b": 2, "a": 1})
    """

    def __init__(
        self,
        cas: ContentStore,
        config: Optional[ExecutorConfig] = None,
    ):
        cfg = config or get_config().executor
        self._cas = cas
        self._max_call_depth = cfg.max_call_depth.get()
        self._max_stack_depth = cfg.max_stack_depth.get()

    def load(self, rb_cid: str) -> int:
        """Fetch bytecode and return its opcode."""
        try:
            raw = self._cas.get(rb_cid)
        except CidNotFoundError:
            raise BytecodeNotFoundError(rb_cid) from None
        _, opcode = read_header(raw)
        return opcode

    def execute(self, rb_cid: str, inputs: Any, _depth: int = 0) -> ExecOutput:
        """Run the chip identified by rb_cid on inputs."""
        if _depth >= self._max_call_depth:
            raise ExecError(
                f"call depth {_depth} reached the limit of {self._max_call_depth}",
                rb_cid=rb_cid,
            )

        opcode = self.load(rb_cid)
        canonical_inputs = canonicalize(inputs)

        state = ExecutionState(opcode=opcode, max_stack=self._max_stack_depth, depth=_depth)
        state.push(canonical_inputs.value)
        try:
            self._step(state)
        except ExecError:
            logger.error("Execution failed", rb_cid=rb_cid, opcode=opcode_name(opcode))
            raise
        result = state.pop()

        output = canonicalize(result)
        logger.debug(
            "Executed chip",
            rb_cid=rb_cid,
            opcode=opcode_name(opcode),
            input_cid=canonical_inputs.cid,
            content_cid=output.cid,
            depth=_depth,
        )
        return ExecOutput(body=output.value, content_cid=output.cid)

    def _step(self, state: ExecutionState) -> None:
        """Dispatch on the chip opcode."""
        op = state.opcode
        operand = state.pop()

        if op == Opcode.NORMALIZE:
            state.push(operand)

        elif op == Opcode.VALIDATE:
            args = _require(operand, Opcode.VALIDATE, "schema_cid", "value")
            state.push(self._validate(args))

        elif op == Opcode.POLICY_EVAL:
            args = _require(operand, Opcode.POLICY_EVAL, "policy")
            raw_proofs = args.get("proofs", [])
            if not isinstance(raw_proofs, list):
                raise ExecError("POLICY_EVAL proofs must be a list", opcode=int(Opcode.POLICY_EVAL))
            try:
                expr = parse_policy(args["policy"])
                proofs = coerce_proofs(raw_proofs)
            except PolicyError as e:
                raise ExecError(f"POLICY_EVAL: {e}", opcode=int(Opcode.POLICY_EVAL)) from e
            state.push({"result": expr.evaluate(proofs)})

        elif op == Opcode.COMPILE:
            args = _require(operand, Opcode.COMPILE, "spec")
            try:
                compiled = compile_chip(args["spec"])
            except CompileError as e:
                raise ExecError(f"COMPILE: {e}", opcode=int(Opcode.COMPILE)) from e
            state.push(compiled.to_dict())

        elif op == Opcode.EXEC:
            args = _require(operand, Opcode.EXEC, "rb_cid")
            nested = self.execute(args["rb_cid"], args.get("inputs", {}), _depth=state.depth + 1)
            state.push(nested.to_dict())

        else:
            # Base and unassigned opcodes echo their canonical input.
            state.push(operand)

    def _validate(self, args: Mapping[str, Any]) -> Dict[str, Any]:
        value = args["value"]
        canon = canonicalize(value)
        validator = SchemaValidator.from_cas(args["schema_cid"], self._cas)
        outcome = validator.validate(canon.value)
        return {"errors": outcome.errors, "input_cid": canon.cid, "valid": outcome.valid}


def execute(rb_cid: str, inputs: Any, cas: ContentStore) -> ExecOutput:
    """Execute with a default-configured Executor."""
    return Executor(cas).execute(rb_cid, inputs)
