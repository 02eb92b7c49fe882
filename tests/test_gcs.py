import pytest

from chainstore.config import Config, GCSStorageConfig, StorageConfigs, StorageOpts
from chainstore.storage.base import StorageError, TaskRun
from chainstore.storage.gcs import GCSBackend, InMemoryObjectStore


@pytest.fixture
def store():
    return InMemoryObjectStore()


@pytest.fixture
def backend(store):
    cfg = Config(storage=StorageConfigs(gcs=GCSStorageConfig(bucket="foo")))
    tr = TaskRun(namespace="foo", name="bar", uid="uid")
    return GCSBackend(tr, store, cfg)


def test_store_and_retrieve(backend):
    opts = StorageOpts(key="foo-uid")
    backend.store_payload(b"signed", "signature", opts)
    assert backend.retrieve_signature(opts) == "signature"
    assert backend.retrieve_payload(opts) == "signed"


def test_object_names_without_cert(backend, store):
    backend.store_payload(b"signed", "signature", StorageOpts(key="foo-uid"))
    assert store.objects == {
        "taskrun-foo-bar/foo-uid.signature": b"signature",
        "taskrun-foo-bar/foo-uid.payload": b"signed",
    }


def test_cert_and_chain_are_written(backend, store):
    backend.store_payload(b"p", "s", StorageOpts(key="k", cert="CERT", chain="CHAIN"))
    assert store.objects["taskrun-foo-bar/k.cert"] == b"CERT"
    assert store.objects["taskrun-foo-bar/k.chain"] == b"CHAIN"
    assert len(store.objects) == 4


def test_missing_object_raises(backend):
    with pytest.raises(StorageError):
        backend.retrieve_payload(StorageOpts(key="absent"))


def test_writer_saves_on_close(store):
    writer = store.open_writer("a/b")
    writer.write(b"data")
    assert "a/b" not in store.objects
    writer.close()
    with store.open_reader("a/b") as reader:
        assert reader.read() == b"data"


def test_backend_type(backend):
    assert backend.backend_type() == "gcs"