"""Content-addressed storage (CAS) for rho.

Blobs are keyed by their CID (unpadded base64url SHA-256). The store is
append-only: there is no update and no delete, so a CID can never be rebound to
different bytes and concurrent ``put`` calls for the same bytes commute.

The store is an in-process object injected into every component that needs it.
A single lock guards the underlying map and is held for exactly one map access
per call.

``export_to_dir`` / ``import_from_dir`` snapshot the store to a directory of
``<cid>.bin`` files. They exist for fixtures and debugging; they make no
durability promise.
"""

from __future__ import annotations

import os
import pathlib
import threading
from typing import Any, Dict, Iterator, List, Optional, Union

from rho.config import get_config
from rho.core import Canonical, canonicalize, compute_cid, is_valid_cid, parse_canonical
from rho.errors import CasError, CidMismatchError, CidNotFoundError
from rho.observability import Layer, get_logger

logger = get_logger("store", Layer.CAS)

BLOB_SUFFIX = ".bin"


class ContentStore:
    """Thread-safe, append-only map from CID to bytes."""

    def __init__(self, max_blob_bytes: Optional[int] = None):
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()
        self._max_blob_bytes = max_blob_bytes

    @property
    def max_blob_bytes(self) -> int:
        if self._max_blob_bytes is not None:
            return self._max_blob_bytes
        return get_config().cas.max_blob_bytes.get()

    def put(self, data: Union[bytes, bytearray, memoryview]) -> str:
        """Store bytes and return their CID. Re-storing the same bytes is a no-op."""
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise CasError(f"CAS stores bytes, got {type(data).__name__}")
        blob = bytes(data)
        if len(blob) > self.max_blob_bytes:
            raise CasError(
                f"blob of {len(blob)} bytes exceeds limit of {self.max_blob_bytes}",
                size=len(blob),
            )
        cid = compute_cid(blob)
        with self._lock:
            created = self._blobs.setdefault(cid, blob) is blob
        if created:
            logger.debug("Stored blob", cid=cid, size=len(blob))
        return cid

    def get(self, cid: str) -> bytes:
        """Return the bytes stored under cid.

        Raises:
        - CidNotFoundError when absent
        - CidMismatchError when the stored bytes no longer hash to cid
        """
        if not isinstance(cid, str):
            raise CidNotFoundError(repr(cid))
        with self._lock:
            blob = self._blobs.get(cid)
        if blob is None:
            raise CidNotFoundError(cid)
        actual = compute_cid(blob)
        if actual != cid:
            logger.warning("CAS integrity failure", expected=cid, actual=actual)
            raise CidMismatchError(cid, actual, what="stored blob")
        return blob

    def put_value(self, value: Any) -> Canonical:
        """Canonicalize value and store its canonical bytes."""
        canon = canonicalize(value)
        stored = self.put(canon.data)
        if stored != canon.cid:
            raise CidMismatchError(canon.cid, stored, what="canonical value")
        return canon

    def get_value(self, cid: str) -> Any:
        """Fetch and parse a stored canonical value."""
        return parse_canonical(self.get(cid))

    def contains(self, cid: str) -> bool:
        if not isinstance(cid, str):
            return False
        with self._lock:
            return cid in self._blobs

    def __contains__(self, cid: object) -> bool:
        return self.contains(cid)

    def __len__(self) -> int:
        with self._lock:
            return len(self._blobs)

    def cids(self) -> List[str]:
        """Sorted snapshot of stored CIDs."""
        with self._lock:
            return sorted(self._blobs)

    def __iter__(self) -> Iterator[str]:
        return iter(self.cids())

    def export_to_dir(self, directory: Union[str, pathlib.Path]) -> List[pathlib.Path]:
        """Write every blob to ``<directory>/<cid>.bin``; existing files are verified, not rewritten."""
        out_dir = pathlib.Path(directory)
        out_dir.mkdir(parents=True, exist_ok=True)
        with self._lock:
            snapshot = dict(self._blobs)

        written: List[pathlib.Path] = []
        for cid in sorted(snapshot):
            dest = out_dir / f"{cid}{BLOB_SUFFIX}"
            if dest.exists():
                existing = compute_cid(dest.read_bytes())
                if existing != cid:
                    raise CidMismatchError(cid, existing, what=str(dest))
            else:
                dest.write_bytes(snapshot[cid])
            written.append(dest)
        logger.info("Exported store", directory=str(out_dir), count=len(written))
        return written

    def import_from_dir(self, directory: Union[str, pathlib.Path]) -> List[str]:
        """Load ``<cid>.bin`` files, verifying each file hashes to its name."""
        in_dir = pathlib.Path(directory)
        if not in_dir.is_dir():
            raise CasError(f"not a directory: {in_dir}")

        loaded: List[str] = []
        for path in sorted(in_dir.glob(f"*{BLOB_SUFFIX}")):
            name = path.name[: -len(BLOB_SUFFIX)]
            if not is_valid_cid(name):
                raise CasError(f"file name is not a CID: {path.name}")
            blob = path.read_bytes()
            actual = compute_cid(blob)
            if actual != name:
                raise CidMismatchError(name, actual, what=os.fspath(path))
            loaded.append(self.put(blob))
        logger.info("Imported store", directory=str(in_dir), count=len(loaded))
        return loaded
