# chainstore

Configuration parsing and storage backends for signed build payloads.
A signed payload, its signature and optional certificate material can be
stored on a task run's annotations, in an object store, in a document
collection, or handed to a registry to be attached to OCI images.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Configuration

`chainstore.config.new_config_from_map` builds a `Config` from a flat
string mapping such as the data of a configuration map. Keys that are absent
keep their defaults (see `default_config()`); unknown keys are ignored; a value
outside the allowed set for a key raises `ConfigError`.

```python
from chainstore.config import new_config_from_map

cfg = new_config_from_map({
    "artifacts.taskrun.format": "in-toto",
    "artifacts.taskrun.storage": "gcs",
    "storage.gcs.bucket": "my-bucket",
    "transparency.enabled": "manual",
})
assert cfg.artifacts.task_runs.storage_backend == "gcs"
assert cfg.transparency.enabled and cfg.transparency.verify_annotation
```

Recognised keys include `artifacts.taskrun.format|storage|signer`,
`artifacts.oci.format|storage|signer`, `storage.gcs.bucket`,
`storage.oci.repository`, `storage.oci.repository.insecure`,
`storage.docdb.url`, `signers.kms.kmsref`, `signers.x509.fulcio.enabled`,
`signers.x509.fulcio.auth`, `signers.x509.fulcio.address`, `builder.id`,
`transparency.enabled` (`true` or `manual`) and `transparency.url`.

`ConfigStore` keeps the latest parsed configuration: feed it data with
`on_config_changed(data)` (callbacks given to the constructor are then called
with `"chains-config"` and the new `Config`), and get independent copies with
`load()`, which raises `LookupError` until something has been stored.
`use_config(cfg)` is a context manager that makes a configuration current for
the code inside the block, where `current_config()` returns it;
`ConfigStore.activate()` does the same with a copy of the stored configuration.

## Annotation patches

`chainstore.patch.get_annotations_patch(annotations)` returns JSON merge-patch
bytes with sorted keys, for example `{"metadata":{"annotations":{"foo":"bar"}}}`;
an empty mapping gives `{"metadata":{}}`.

## Storage backends

Every backend derives from `chainstore.storage.base.Backend` and offers
`store_payload`, `retrieve_payload`, `retrieve_signature` and `backend_type`.
Storage options travel in a `chainstore.config.StorageOpts` (`key`, `cert`,
`chain`, `payload_format`), and the task run is described by
`chainstore.storage.base.TaskRun`.

- `chainstore.storage.tekton.TektonBackend` writes base64-encoded payload,
  signature, certificate and chain values as task run annotations
  (`chains.tekton.dev/payload-<key>` and so on) through a `TaskRunClient`.
  `InMemoryTaskRunClient` is the client provided.
- `chainstore.storage.gcs.GCSBackend` writes
  `taskrun-<namespace>-<name>/<key>.signature` and `.payload` objects, and,
  when a certificate is given, `.cert` and `.chain` objects, into an
  `ObjectStore`. `InMemoryObjectStore` is the store provided.
- `chainstore.storage.docdb.DocDBBackend` keeps one `SignedDocument` per key in
  a `Collection`. `open_collection` accepts `mem://<name>` URLs only and
  returns a `MemoryCollection`.
- `chainstore.storage.oci.OCIBackend` handles `simplesigning` payloads and
  `in-toto` / `tekton-provenance` statements, parses image references with
  `parse_digest_reference`, and passes each signature or attestation to a
  `Registry`. Retrieving from it raises `StorageError`.

`chainstore.storage.backends.initialize_backends` creates the backends named by
a configuration:

```python
from chainstore.config import StorageOpts, new_config_from_map
from chainstore.storage.base import TaskRun
from chainstore.storage.tekton import InMemoryTaskRunClient
from chainstore.storage.backends import initialize_backends

tr = TaskRun(namespace="foo", name="bar")
client = InMemoryTaskRunClient()
client.create(tr)
cfg = new_config_from_map({"artifacts.oci.storage": "tekton"})
backends = initialize_backends(tr, cfg, tekton_client=client)
tekton = backends["tekton"]
opts = StorageOpts(key="mockpayload")
tekton.store_payload(b'{"A": "foo"}', "mocksignature", opts)
assert tekton.retrieve_signature(opts) == "mocksignature"
```

A backend that is configured but whose client, store or registry was not
passed makes `initialize_backends` raise `StorageError`. Failures while
storing or retrieving also raise `chainstore.storage.base.StorageError`.

## What the package does not do

- It talks to no real service: the only task run client, object store and
  document collection provided keep their data in memory, and `Registry` is
  an abstract interface with no implementation here. Connecting to a cluster,
  a cloud bucket, a document database or an image registry means writing a
  subclass of `TaskRunClient`, `ObjectStore`, `Collection` or `Registry`.
- It does not sign or verify anything, format payloads, or upload to a
  transparency log; it only stores and retrieves what it is given.
- It has no controller, watcher or command-line tool.