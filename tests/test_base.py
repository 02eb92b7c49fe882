import pytest

from chainstore.config import StorageOpts
from chainstore.storage.base import Backend, StorageError, TaskRun


def test_backend_cannot_be_instantiated():
    with pytest.raises(TypeError):
        Backend()


def test_taskrun_annotations_are_not_shared():
    first = TaskRun(namespace="foo", name="bar")
    second = TaskRun(namespace="foo", name="bar")
    first.annotations["chains.tekton.dev/signed"] = "true"
    assert second.annotations == {}


def test_taskrun_equality_by_value():
    assert TaskRun(namespace="foo", name="bar", uid="uid") == TaskRun(
        namespace="foo", name="bar", uid="uid"
    )
    assert TaskRun(namespace="foo", name="bar") != TaskRun(namespace="foo", name="baz")


def test_storage_error_carries_message():
    err = StorageError("not found")
    assert str(err) == "not found"
    assert isinstance(err, Exception)


def test_storage_opts_key_reaches_backend():
    class _Recorder(Backend):
        def __init__(self):
            self.stored = {}

        def store_payload(self, raw_payload, signature, opts):
            self.stored[opts.key] = (raw_payload.decode(), signature)

        def retrieve_payload(self, opts):
            return self.stored[opts.key][0]

        def retrieve_signature(self, opts):
            return self.stored[opts.key][1]

        def backend_type(self):
            return "recorder"

    backend = _Recorder()
    opts = StorageOpts(key="foo")
    backend.store_payload(b"signed", "signature", opts)
    assert backend.retrieve_payload(opts) == "signed"
    assert backend.retrieve_signature(opts) == "signature"