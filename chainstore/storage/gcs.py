"""Storage backend that writes signatures and payloads as bucket objects."""

from __future__ import annotations

import abc
import io
import logging
import posixpath
import threading
from typing import BinaryIO

from chainstore.config import Config, StorageOpts
from chainstore.storage.base import Backend, StorageError, TaskRun

STORAGE_BACKEND_GCS = "gcs"
SIGNATURE_NAME_FORMAT = "taskrun-{}-{}/{}.signature"
PAYLOAD_NAME_FORMAT = "taskrun-{}-{}/{}.payload"

_log = logging.getLogger(__name__)


class ObjectStore(abc.ABC):
    """A bucket of named binary objects."""

    @abc.abstractmethod
    def open_writer(self, name: str) -> BinaryIO:
        """Return a writable stream; the object is saved when it is closed."""

    @abc.abstractmethod
    def open_reader(self, name: str) -> BinaryIO:
        """Return a readable stream; raise StorageError if there is no object."""


class _MemoryWriter(io.BytesIO):
    def __init__(self, store: InMemoryObjectStore, name: str) -> None:
        super().__init__()
        self._store = store
        self._name = name

    def close(self) -> None:
        if not self.closed:
            self._store._save(self._name, self.getvalue())
        super().close()


class InMemoryObjectStore(ObjectStore):
    """An object store kept in memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.objects: dict[str, bytes] = {}

    def _save(self, name: str, data: bytes) -> None:
        with self._lock:
            self.objects[name] = data

    def open_writer(self, name: str) -> BinaryIO:
        return _MemoryWriter(self, name)

    def open_reader(self, name: str) -> BinaryIO:
        with self._lock:
            try:
                data = self.objects[name]
            except KeyError:
                raise StorageError(f"object {name!r} does not exist") from None
        return io.BytesIO(data)


class GCSBackend(Backend):
    """Stores each signature, payload, certificate and chain as its own object."""

    def __init__(self, tr: TaskRun, store: ObjectStore, cfg: Config) -> None:
        self.tr = tr
        self.store = store
        self.cfg = cfg

    def _write(self, name: str, data: bytes) -> None:
        with self.store.open_writer(name) as writer:
            writer.write(data)

    def store_payload(self, raw_payload: bytes, signature: str, opts: StorageOpts) -> None:
        # Objects live under taskrun-$namespace-$name/$key.<kind>.
        root = f"taskrun-{self.tr.namespace}-{self.tr.name}"

        def object_name(suffix: str) -> str:
            return posixpath.normpath(posixpath.join(root, f"{opts.key}.{suffix}"))

        sig_name = object_name("signature")
        _log.info("Storing payload at %s", sig_name)
        self._write(sig_name, signature.encode("utf-8"))
        self._write(object_name("payload"), raw_payload)

        if not opts.cert:
            return
        self._write(object_name("cert"), opts.cert.encode("utf-8"))
        self._write(object_name("chain"), opts.chain.encode("utf-8"))

    def backend_type(self) -> str:
        return STORAGE_BACKEND_GCS

    def _retrieve_object(self, name: str) -> str:
        with self.store.open_reader(name) as reader:
            return reader.read().decode("utf-8", errors="surrogateescape")

    def retrieve_signature(self, opts: StorageOpts) -> str:
        return self._retrieve_object(
            SIGNATURE_NAME_FORMAT.format(self.tr.namespace, self.tr.name, opts.key)
        )

    def retrieve_payload(self, opts: StorageOpts) -> str:
        return self._retrieve_object(
            PAYLOAD_NAME_FORMAT.format(self.tr.namespace, self.tr.name, opts.key)
        )