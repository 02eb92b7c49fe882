"""Creation of the storage backends a configuration asks for."""

from __future__ import annotations

from chainstore.config import Config
from chainstore.storage.base import Backend, StorageError, TaskRun
from chainstore.storage.docdb import STORAGE_TYPE_DOCDB, DocDBBackend
from chainstore.storage.gcs import STORAGE_BACKEND_GCS, GCSBackend, ObjectStore
from chainstore.storage.oci import STORAGE_BACKEND_OCI, OCIBackend, Registry
from chainstore.storage.tekton import STORAGE_BACKEND_TEKTON, TaskRunClient, TektonBackend


def _require(value, what: str, backend: str):
    if value is None:
        raise StorageError(f"the {backend} storage backend needs {what}")
    return value


def initialize_backends(
    tr: TaskRun,
    cfg: Config,
    *,
    tekton_client: TaskRunClient | None = None,
    object_store: ObjectStore | None = None,
    oci_registry: Registry | None = None,
) -> dict[str, Backend]:
    """Create every storage backend the configuration names, keyed by type."""
    configured = (
        cfg.artifacts.task_runs.storage_backend,
        cfg.artifacts.oci.storage_backend,
    )
    backends: dict[str, Backend] = {}
    for backend_type in configured:
        if backend_type == STORAGE_BACKEND_GCS:
            store = _require(object_store, "an object store", backend_type)
            backends[backend_type] = GCSBackend(tr, store, cfg)
        elif backend_type == STORAGE_BACKEND_TEKTON:
            client = _require(tekton_client, "a TaskRun client", backend_type)
            backends[backend_type] = TektonBackend(client, tr)
        elif backend_type == STORAGE_BACKEND_OCI:
            registry = _require(oci_registry, "a registry", backend_type)
            backends[backend_type] = OCIBackend(tr, cfg, registry)
        elif backend_type == STORAGE_TYPE_DOCDB:
            backends[backend_type] = DocDBBackend.from_config(tr, cfg)
    return backends