"""Storage backend that keeps signed documents in a document collection."""

from __future__ import annotations

import abc
import base64
import binascii
import copy
import json
import threading
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

from chainstore.config import Config, StorageOpts
from chainstore.storage.base import Backend, StorageError, TaskRun

STORAGE_TYPE_DOCDB = "docdb"


@dataclass
class SignedDocument:
    """A stored payload with its signature, keyed by name."""

    signed: bytes = b""
    signature: str = ""
    cert: str = ""
    chain: str = ""
    object: Any = None
    name: str = ""


class Collection(abc.ABC):
    """A collection of signed documents keyed by name."""

    @abc.abstractmethod
    def put(self, document: SignedDocument) -> None:
        """Store the document, replacing any with the same name."""

    @abc.abstractmethod
    def get(self, name: str) -> SignedDocument:
        """Return the named document; raise StorageError if there is none."""


class MemoryCollection(Collection):
    """A collection kept in memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._documents: dict[str, SignedDocument] = {}

    def put(self, document: SignedDocument) -> None:
        if not document.name:
            raise StorageError("document is missing its name")
        with self._lock:
            self._documents[document.name] = copy.deepcopy(document)

    def get(self, name: str) -> SignedDocument:
        with self._lock:
            try:
                return copy.deepcopy(self._documents[name])
            except KeyError:
                raise StorageError(f"document {name!r} not found") from None


def open_collection(url: str) -> Collection:
    """Open the collection a URL names; only mem:// collections are available."""
    parts = urlsplit(url)
    if parts.scheme == "mem":
        if not parts.netloc:
            raise StorageError(f"{url!r} does not name a collection")
        return MemoryCollection()
    raise StorageError(f"no driver registered for scheme {parts.scheme!r} in {url!r}")


class DocDBBackend(Backend):
    """Stores signed payloads as documents in a collection."""

    def __init__(self, tr: TaskRun, collection: Collection) -> None:
        self.tr = tr
        self.collection = collection

    @classmethod
    def from_config(cls, tr: TaskRun, cfg: Config) -> DocDBBackend:
        """Open the collection named by the configuration."""
        return cls(tr, open_collection(cfg.storage.docdb.url))

    def store_payload(self, raw_payload: bytes, signature: str, opts: StorageOpts) -> None:
        try:
            obj = json.loads(raw_payload)
        except ValueError as err:
            raise StorageError(f"payload is not JSON: {err}") from err
        self.collection.put(
            SignedDocument(
                signed=bytes(raw_payload),
                signature=base64.b64encode(signature.encode("utf-8")).decode("ascii"),
                object=obj,
                name=opts.key,
                cert=opts.cert,
                chain=opts.chain,
            )
        )

    def backend_type(self) -> str:
        return STORAGE_TYPE_DOCDB

    def retrieve_signature(self, opts: StorageOpts) -> str:
        document = self.collection.get(opts.key)
        try:
            sig = base64.b64decode(document.signature, validate=True)
        except (binascii.Error, ValueError) as err:
            raise StorageError(f"cannot decode signature: {err}") from err
        return sig.decode("utf-8", errors="surrogateescape")

    def retrieve_payload(self, opts: StorageOpts) -> str:
        document = self.collection.get(opts.key)
        return document.signed.decode("utf-8", errors="surrogateescape")