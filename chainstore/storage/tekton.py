"""Storage backend that keeps signatures as annotations on the TaskRun itself."""

from __future__ import annotations

import abc
import base64
import binascii
import copy
import json
import logging
import threading
from typing import Any

from chainstore.config import StorageOpts
from chainstore.patch import get_annotations_patch
from chainstore.storage.base import Backend, StorageError, TaskRun

STORAGE_BACKEND_TEKTON = "tekton"
PAYLOAD_ANNOTATION_FORMAT = "chains.tekton.dev/payload-{}"
SIGNATURE_ANNOTATION_FORMAT = "chains.tekton.dev/signature-{}"
CERT_ANNOTATION_FORMAT = "chains.tekton.dev/cert-{}"
CHAIN_ANNOTATION_FORMAT = "chains.tekton.dev/chain-{}"

_log = logging.getLogger(__name__)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _merge_patch(target: Any, patch: Any) -> Any:
    """Apply a JSON merge patch to a decoded JSON value."""
    if not isinstance(patch, dict):
        return patch
    result = dict(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = _merge_patch(result.get(key), value)
    return result


class TaskRunClient(abc.ABC):
    """Access to TaskRuns held by the cluster."""

    @abc.abstractmethod
    def get(self, namespace: str, name: str) -> TaskRun:
        """Return the TaskRun; raise LookupError if there is none."""

    @abc.abstractmethod
    def patch(self, namespace: str, name: str, patch_bytes: bytes) -> TaskRun:
        """Apply a JSON merge patch to the TaskRun and return the result."""


class InMemoryTaskRunClient(TaskRunClient):
    """A TaskRun client that keeps its TaskRuns in memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._task_runs: dict[tuple[str, str], TaskRun] = {}

    def create(self, tr: TaskRun) -> TaskRun:
        """Add a TaskRun; raise ValueError if one with that name exists."""
        key = (tr.namespace, tr.name)
        with self._lock:
            if key in self._task_runs:
                raise ValueError(f'taskruns "{tr.name}" already exists')
            self._task_runs[key] = copy.deepcopy(tr)
            return copy.deepcopy(tr)

    def _lookup(self, namespace: str, name: str) -> TaskRun:
        try:
            return self._task_runs[(namespace, name)]
        except KeyError:
            raise LookupError(f'taskruns "{name}" not found') from None

    def get(self, namespace: str, name: str) -> TaskRun:
        with self._lock:
            return copy.deepcopy(self._lookup(namespace, name))

    def patch(self, namespace: str, name: str, patch_bytes: bytes) -> TaskRun:
        try:
            patch = json.loads(patch_bytes)
        except ValueError as err:
            raise ValueError(f"invalid merge patch: {err}") from None
        with self._lock:
            stored = self._lookup(namespace, name)
            merged = _merge_patch(
                {"metadata": {"annotations": dict(stored.annotations)}}, patch
            )
            metadata = merged.get("metadata") if isinstance(merged, dict) else None
            annotations = metadata.get("annotations") if isinstance(metadata, dict) else None
            annotations = annotations or {}
            if not isinstance(annotations, dict) or not all(
                isinstance(v, str) for v in annotations.values()
            ):
                raise ValueError("annotations must map strings to strings")
            stored.annotations = dict(annotations)
            return copy.deepcopy(stored)


class TektonBackend(Backend):
    """Stores base64 encoded payloads and signatures as TaskRun annotations."""

    def __init__(self, client: TaskRunClient, tr: TaskRun) -> None:
        self.client = client
        self.tr = tr

    def store_payload(self, raw_payload: bytes, signature: str, opts: StorageOpts) -> None:
        _log.info("Storing payload on TaskRun %s/%s", self.tr.namespace, self.tr.name)
        # A patch rather than an update avoids racing with other writers.
        patch_bytes = get_annotations_patch(
            {
                PAYLOAD_ANNOTATION_FORMAT.format(opts.key): _b64(raw_payload),
                SIGNATURE_ANNOTATION_FORMAT.format(opts.key): _b64(signature.encode("utf-8")),
                CERT_ANNOTATION_FORMAT.format(opts.key): _b64(opts.cert.encode("utf-8")),
                CHAIN_ANNOTATION_FORMAT.format(opts.key): _b64(opts.chain.encode("utf-8")),
            }
        )
        try:
            self.client.patch(self.tr.namespace, self.tr.name, patch_bytes)
        except (LookupError, ValueError) as err:
            raise StorageError(str(err)) from err

    def backend_type(self) -> str:
        return STORAGE_BACKEND_TEKTON

    def _retrieve_annotation_value(self, annotation_key: str, decode: bool) -> str:
        _log.info(
            "Retrieving annotation %r on TaskRun %s/%s",
            annotation_key,
            self.tr.namespace,
            self.tr.name,
        )
        try:
            tr = self.client.get(self.tr.namespace, self.tr.name)
        except LookupError as err:
            raise StorageError(f"error retrieving taskrun: {err}") from err

        raw = tr.annotations.get(annotation_key)
        if raw is None:
            return ""
        if not decode:
            return raw
        try:
            decoded = base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError) as err:
            quoted = json.dumps(annotation_key)
            raise StorageError(
                f"error decoding the annotation value for the key {quoted}: {err}"
            ) from err
        return decoded.decode("utf-8", errors="surrogateescape")

    def retrieve_signature(self, opts: StorageOpts) -> str:
        _log.info("Retrieving signature on TaskRun %s/%s", self.tr.namespace, self.tr.name)
        return self._retrieve_annotation_value(
            SIGNATURE_ANNOTATION_FORMAT.format(opts.key), True
        )

    def retrieve_payload(self, opts: StorageOpts) -> str:
        _log.info("Retrieving payload on TaskRun %s/%s", self.tr.namespace, self.tr.name)
        return self._retrieve_annotation_value(PAYLOAD_ANNOTATION_FORMAT.format(opts.key), True)