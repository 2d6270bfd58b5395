"""
Rho modules: compositions of the core chips.

Each module wires canonicalization, the content store, the compiler, the
executor, validation and policy evaluation into one operation and reports its
result as a Receipt.

    build      stored spec ──► compile ──► store bytecode ──► receipt
    evaluate   rb_cid + inputs ──► execute ──► receipt
    publish    spec ──► schema check ──► store spec ──► receipt
    Ledger     receipt ──► store ──► hash-chained entry
    permit     policy document (CAS) + proofs ──► bool
    log_entry  level/message/fields ──► schema check ──► receipt
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from rho.cas import ContentStore
from rho.compiler import compile_and_store
from rho.core import verify_cid
from rho.errors import CidMismatchError, RhoError, ValidateError
from rho.executor import Executor
from rho.observability import Layer, get_logger
from rho.policy import ProofLike, parse_policy
from rho.receipt import Receipt, emit, verify_receipt
from rho.validation import validate

logger = get_logger("modules", Layer.MODULES)


# =============================================================================
# SCHEMAS
# =============================================================================

CHIP_SPEC_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "chip": {"type": "string", "minLength": 1},
        "version": {"type": "string"},
        "type": {"type": "string", "enum": ["base", "module", "product"]},
        "inputs": {"type": "object"},
        "outputs": {"type": "object"},
        "determinism": {"type": "string"},
        "opcode": {"type": "integer", "minimum": 0, "maximum": 255},
        "wiring": {"type": "array"},
    },
    "required": ["chip", "version", "type", "inputs", "outputs"],
}

LOG_LEVELS = ("info", "warn", "error")

LOG_ENTRY_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "level": {"type": "string", "enum": list(LOG_LEVELS)},
        "message": {"type": "string"},
        "fields": {"type": "object"},
    },
    "required": ["level", "message"],
    "additionalProperties": False,
}


def _store_schema(schema: Mapping[str, Any], cas: ContentStore) -> str:
    return cas.put_value(schema).cid


# =============================================================================
# CHIP LIFECYCLE
# =============================================================================

def build(spec_cid: str, cas: ContentStore) -> Receipt:
    """Compile a spec already in the store and persist its bytecode.

    Raises CidNotFoundError when spec_cid is absent and CompileError when the
    stored document is not a valid chip spec.
    """
    spec = cas.get_value(spec_cid)
    out = compile_and_store(spec, cas)
    logger.info("Built chip", spec_cid=spec_cid, rb_cid=out.rb_cid)
    return emit({"rb_cid": out.rb_cid, "spec_cid": spec_cid})


def evaluate(rb_cid: str, inputs: Any, cas: ContentStore) -> Receipt:
    """Execute stored bytecode and wrap the output in a receipt."""
    result = Executor(cas).execute(rb_cid, inputs)
    return emit({"body": result.body, "content_cid": result.content_cid, "rb_cid": rb_cid})


def publish(chip_spec: Mapping[str, Any], owner_cid: str, cas: ContentStore) -> Receipt:
    """Validate a chip spec against the built-in schema and store it."""
    schema_cid = _store_schema(CHIP_SPEC_SCHEMA, cas)
    outcome = validate(chip_spec, schema_cid, cas)
    outcome.raise_if_invalid("chip spec")

    chip_cid = cas.put_value(chip_spec).cid
    logger.info("Published chip", chip_cid=chip_cid, owner_cid=owner_cid)
    return emit({"chip_cid": chip_cid, "owner_cid": owner_cid})


# =============================================================================
# LEDGER
# =============================================================================

@dataclass(frozen=True)
class LedgerEntry:
    """One link of the ledger chain."""
    seq: int
    receipt_cid: str
    prev: Optional[str]
    cid: str

    def to_dict(self) -> Dict[str, Any]:
        return {"prev": self.prev, "receipt_cid": self.receipt_cid, "seq": self.seq}


class Ledger:
    """
    Append-only, hash-chained ledger of receipts.

    Each entry body is ``{"prev", "receipt_cid", "seq"}``; the genesis entry
    has no ``prev``. Entries and receipts both live in the content store, so
    the chain can be re-verified from CIDs alone.
    """

    def __init__(self, cas: ContentStore):
        self._cas = cas
        self._entries: List[str] = []
        self._lock = threading.Lock()

    @property
    def head(self) -> Optional[str]:
        with self._lock:
            return self._entries[-1] if self._entries else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def append(self, receipt: Receipt) -> str:
        """Store the receipt and chain a new entry. Returns the entry CID."""
        verify_receipt(receipt)
        stored = self._cas.put_value(receipt.to_dict())

        with self._lock:
            prev = self._entries[-1] if self._entries else None
            entry = self._cas.put_value(
                {"prev": prev, "receipt_cid": stored.cid, "seq": len(self._entries)}
            )
            self._entries.append(entry.cid)

        logger.debug("Appended ledger entry", seq=len(self._entries) - 1, entry_cid=entry.cid)
        return entry.cid

    def entries(self) -> List[LedgerEntry]:
        with self._lock:
            cids = list(self._entries)
        out = []
        for cid in cids:
            body = self._cas.get_value(cid)
            out.append(
                LedgerEntry(
                    seq=body["seq"],
                    receipt_cid=body["receipt_cid"],
                    prev=body.get("prev"),
                    cid=cid,
                )
            )
        return out

    def receipt(self, entry: LedgerEntry) -> Receipt:
        return Receipt.from_dict(self._cas.get_value(entry.receipt_cid))

    def verify(self) -> Tuple[bool, Optional[int]]:
        """
        Walk the chain recomputing every CID.

        Returns (valid, first_invalid_index).
        """
        with self._lock:
            cids = list(self._entries)

        prev: Optional[str] = None
        for i, cid in enumerate(cids):
            try:
                raw = self._cas.get(cid)
                verify_cid(raw, cid, what="ledger entry")
                body = self._cas.get_value(cid)
                if body.get("seq") != i or body.get("prev") != prev:
                    raise CidMismatchError(str(prev), str(body.get("prev")), what="ledger link")
                verify_receipt(self._cas.get_value(body["receipt_cid"]))
            except (RhoError, KeyError, TypeError) as e:
                logger.warning("Ledger verification failed", index=i, entry_cid=cid, error=str(e))
                return (False, i)
            prev = cid
        return (True, None)


# =============================================================================
# ACCESS CONTROL
# =============================================================================

def permit(
    principal: str,
    action: str,
    resource: str,
    policy_cid: str,
    proofs: Iterable[ProofLike],
    cas: ContentStore,
) -> bool:
    """Evaluate the policy document stored under policy_cid against proofs.

    The document is an object with a ``policy`` expression; other members are
    free-form. Raises CidNotFoundError when the document is absent and
    ValidateError when it has no policy string.
    """
    document = cas.get_value(policy_cid)
    if not isinstance(document, Mapping) or not isinstance(document.get("policy"), str):
        raise ValidateError("policy document must be an object with a 'policy' string", policy_cid=policy_cid)

    allowed = parse_policy(document["policy"]).evaluate(proofs)
    logger.info(
        "Permit decision",
        principal=principal,
        action=action,
        resource=resource,
        policy_cid=policy_cid,
        allowed=allowed,
    )
    return allowed


# =============================================================================
# STRUCTURED LOG
# =============================================================================

def log_entry(
    level: str,
    message: str,
    fields: Optional[Mapping[str, Any]],
    cas: ContentStore,
) -> Receipt:
    """Validate a structured log record and emit it as a receipt."""
    if level not in LOG_LEVELS:
        raise ValidateError(
            f"invalid log level {level!r}; must be one of {', '.join(LOG_LEVELS)}",
            level=level,
        )

    entry: Dict[str, Any] = {"level": level, "message": message}
    if fields is not None:
        entry["fields"] = fields

    schema_cid = _store_schema(LOG_ENTRY_SCHEMA, cas)
    validate(entry, schema_cid, cas).raise_if_invalid("log entry")
    return emit(entry)
