"""
Signature policy expressions.

Grammar (case-sensitive literals):

    policy  := "true" | "false" | "ed25519" | "mldsa3"
             | "hybrid-and(" list ")"
             | "hybrid-or("  list ")"
    list    := policy ("," policy)*

A policy is parsed once into an immutable expression tree and evaluated against
a set of proofs. A leaf algorithm holds iff at least one proof carries that
algorithm (compared case-insensitively). ``hybrid-and`` requires every child,
``hybrid-or`` at least one. Once proofs are well formed, evaluation cannot
fail; every syntax problem is reported by the parser.

Example:
    expr = parse_policy("hybrid-and(ed25519,mldsa3)")
    expr.evaluate([Proof(algorithm="ed25519", ...)])   # False

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from rho.config import get_config
from rho.errors import PolicyError
from rho.receipt import Signature

ALGORITHMS = ("ed25519", "mldsa3")
CONSTANTS = {"true": True, "false": False}
OPERATORS = ("hybrid-and", "hybrid-or")

_WHITESPACE = " \t\r\n"


# =============================================================================
# PROOF
# =============================================================================

@dataclass(frozen=True)
class Proof:
    """One cryptographic attestation over a message CID."""
    algorithm: str
    public_key: str
    signature: str
    message_cid: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Proof":
        if not isinstance(data, Mapping):
            raise PolicyError(f"proof must be an object, got {type(data).__name__}")
        missing = [k for k in ("algorithm", "public_key", "signature", "message_cid") if k not in data]
        if missing:
            raise PolicyError(f"proof is missing fields: {', '.join(missing)}")
        return cls(
            algorithm=str(data["algorithm"]),
            public_key=str(data["public_key"]),
            signature=str(data["signature"]),
            message_cid=str(data["message_cid"]),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "algorithm": self.algorithm,
            "public_key": self.public_key,
            "signature": self.signature,
            "message_cid": self.message_cid,
        }

    def to_signature(self) -> Signature:
        """Receipt signature form (the message CID is implied by the receipt)."""
        return Signature(
            algorithm=self.algorithm,
            public_key=self.public_key,
            signature=self.signature,
        )


ProofLike = Union[Proof, Mapping[str, Any]]


def coerce_proofs(proofs: Iterable[ProofLike]) -> List[Proof]:
    return [p if isinstance(p, Proof) else Proof.from_dict(p) for p in proofs]


# =============================================================================
# EXPRESSION TREE
# =============================================================================

class PolicyExpression:
    """Base class of the immutable policy tree."""

    def evaluate(self, proofs: Iterable[ProofLike]) -> bool:
        algorithms = frozenset(p.algorithm.lower() for p in coerce_proofs(proofs))
        return self._holds(algorithms)

    def _holds(self, algorithms: frozenset) -> bool:
        raise NotImplementedError

    def to_text(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.to_text()


@dataclass(frozen=True)
class Const(PolicyExpression):
    value: bool

    def _holds(self, algorithms: frozenset) -> bool:
        return self.value

    def to_text(self) -> str:
        return "true" if self.value else "false"


@dataclass(frozen=True)
class Leaf(PolicyExpression):
    algorithm: str

    def _holds(self, algorithms: frozenset) -> bool:
        return self.algorithm.lower() in algorithms

    def to_text(self) -> str:
        return self.algorithm


@dataclass(frozen=True)
class And(PolicyExpression):
    children: Tuple[PolicyExpression, ...]

    def _holds(self, algorithms: frozenset) -> bool:
        return all(c._holds(algorithms) for c in self.children)

    def to_text(self) -> str:
        return "hybrid-and(" + ",".join(c.to_text() for c in self.children) + ")"


@dataclass(frozen=True)
class Or(PolicyExpression):
    children: Tuple[PolicyExpression, ...]

    def _holds(self, algorithms: frozenset) -> bool:
        return any(c._holds(algorithms) for c in self.children)

    def to_text(self) -> str:
        return "hybrid-or(" + ",".join(c.to_text() for c in self.children) + ")"


# =============================================================================
# PARSER
# =============================================================================

class _Parser:
    """Recursive-descent parser over a character index."""

    def __init__(self, text: str, max_depth: int):
        self.text = text
        self.pos = 0
        self.max_depth = max_depth

    def _skip_ws(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos] in _WHITESPACE:
            self.pos += 1

    def _peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def _expect(self, ch: str) -> None:
        self._skip_ws()
        if self._peek() != ch:
            found = repr(self._peek()) if self._peek() else "end of input"
            raise PolicyError(f"expected {ch!r}, found {found}", position=self.pos)
        self.pos += 1

    def _word(self) -> str:
        start = self.pos
        while self.pos < len(self.text) and (self.text[self.pos].isalnum() or self.text[self.pos] == "-"):
            self.pos += 1
        return self.text[start:self.pos]

    def parse(self) -> PolicyExpression:
        expr = self._policy(0)
        self._skip_ws()
        if self.pos != len(self.text):
            raise PolicyError(f"unexpected trailing input {self.text[self.pos:]!r}", position=self.pos)
        return expr

    def _policy(self, depth: int) -> PolicyExpression:
        self._skip_ws()
        start = self.pos
        word = self._word()

        if not word:
            found = repr(self._peek()) if self._peek() else "end of input"
            raise PolicyError(f"expected a policy, found {found}", position=start)
        if word in CONSTANTS:
            return Const(CONSTANTS[word])
        if word in ALGORITHMS:
            return Leaf(word)
        if word in OPERATORS:
            if depth >= self.max_depth:
                raise PolicyError(f"policy nesting deeper than {self.max_depth}", position=start)
            if self._peek() != "(":
                raise PolicyError(f"expected '(' after {word}", position=self.pos)
            self.pos += 1
            children = self._list(depth + 1)
            self._expect(")")
            return And(children) if word == "hybrid-and" else Or(children)
        raise PolicyError(f"unknown token {word!r}", position=start)

    def _list(self, depth: int) -> Tuple[PolicyExpression, ...]:
        children = [self._policy(depth)]
        while True:
            self._skip_ws()
            if self._peek() != ",":
                return tuple(children)
            self.pos += 1
            children.append(self._policy(depth))


def parse_policy(text: str, max_depth: Optional[int] = None) -> PolicyExpression:
    """Parse a policy string into an expression tree. Raises PolicyError."""
    if not isinstance(text, str):
        raise PolicyError(f"policy must be a string, got {type(text).__name__}")
    if max_depth is None:
        max_depth = get_config().policy.max_depth.get()
    return _Parser(text, max_depth).parse()


def policy_eval(text: str, proofs: Iterable[ProofLike]) -> bool:
    """Parse text and evaluate it against proofs."""
    return parse_policy(text).evaluate(proofs)
