"""JSON Schema validation collaborator.

Validates canonical values against JSON Schema documents (Draft 2020-12) stored
in the content store. The validator never sees a non-canonical value: inputs
are canonicalized and stored first, and validation runs on the canonical tree.

Error messages are ``"<json path>: <message>"`` strings, sorted so the outcome
is itself deterministic.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Union

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from rho.cas import ContentStore
from rho.core import canonicalize
from rho.errors import CidMismatchError, CidNotFoundError, NormalizeError, ValidateError
from rho.observability import Layer, get_logger

logger = get_logger("validation", Layer.CORE)


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of validating a value against a schema."""
    valid: bool
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors)}

    def raise_if_invalid(self, what: str = "value") -> None:
        if not self.valid:
            raise ValidateError(f"{what} failed validation: {'; '.join(self.errors)}", errors=list(self.errors))


class SchemaValidator:
    """Compiled JSON Schema."""

    def __init__(self, schema: Union[Mapping[str, Any], bool]):
        if not isinstance(schema, (Mapping, bool)):
            raise ValidateError(f"schema must be an object or a boolean, got {type(schema).__name__}")
        try:
            Draft202012Validator.check_schema(schema)
        except SchemaError as e:
            raise ValidateError(f"invalid schema: {e.message}") from e
        self._validator = Draft202012Validator(schema)

    @classmethod
    def from_cas(cls, schema_cid: str, cas: ContentStore) -> "SchemaValidator":
        try:
            schema = cas.get_value(schema_cid)
        except CidNotFoundError as e:
            raise ValidateError(f"schema not found in CAS: {schema_cid}", schema_cid=schema_cid) from e
        except NormalizeError as e:
            raise ValidateError(f"schema is not valid JSON: {e}", schema_cid=schema_cid) from e
        return cls(schema)

    def validate(self, canonical_value: Any) -> ValidationOutcome:
        errors = sorted(
            f"{error.json_path}: {error.message}"
            for error in self._validator.iter_errors(canonical_value)
        )
        return ValidationOutcome(valid=not errors, errors=errors)


def validate(value: Any, schema_cid: str, cas: ContentStore) -> ValidationOutcome:
    """Validate value against the schema stored under schema_cid.

    Steps:
    1. Canonicalize value and store its canonical bytes (CID verified)
    2. Fetch the schema from the store
    3. Validate the canonical tree
    """
    canon = canonicalize(value)
    stored = cas.put(canon.data)
    if stored != canon.cid:
        raise CidMismatchError(canon.cid, stored, what="validated value")

    outcome = SchemaValidator.from_cas(schema_cid, cas).validate(canon.value)
    logger.debug(
        "Validated value",
        value_cid=canon.cid,
        schema_cid=schema_cid,
        valid=outcome.valid,
        error_count=len(outcome.errors),
    )
    return outcome
