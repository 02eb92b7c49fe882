import base64
import json

import pytest

from chainstore.config import Config, StorageOpts
from chainstore.storage.base import StorageError, TaskRun
from chainstore.storage.oci import (
    OCIBackend,
    Registry,
    parse_digest_reference,
)

DIGEST_HEX = "a" * 64
DIGEST = f"sha256:{DIGEST_HEX}"


class RecordingRegistry(Registry):
    def __init__(self):
        self.signatures = []
        self.attestations = []

    def write_signature(self, ref, repository, payload, b64_signature, cert, chain):
        self.signatures.append((ref, repository, payload, b64_signature, cert, chain))

    def write_attestation(self, ref, repository, envelope, cert, chain):
        self.attestations.append((ref, repository, envelope, cert, chain))


@pytest.fixture
def registry():
    return RecordingRegistry()


def make_backend(registry, cfg=None):
    tr = TaskRun(name="foo", namespace="bar")
    return OCIBackend(tr, cfg or Config(), registry)


def simple_signing_payload(reference, digest):
    return json.dumps(
        {
            "critical": {
                "identity": {"docker-reference": reference},
                "image": {"docker-manifest-digest": digest},
                "type": "cosign container image signature",
            },
            "optional": None,
        }
    ).encode()


def test_no_subject_raises(registry):
    payload = json.dumps(
        {"_type": "", "predicateType": "", "subject": None, "predicate": None}
    ).encode()
    backend = make_backend(registry)
    with pytest.raises(StorageError, match="Did not find anything to attest"):
        backend.store_payload(payload, "", StorageOpts(payload_format="tekton-provenance"))
    assert registry.attestations == []


def test_simplesigning_uploads_base64_signature(registry):
    backend = make_backend(registry)
    payload = simple_signing_payload("gcr.io/foo/bar", DIGEST)
    backend.store_payload(payload, "sig", StorageOpts(payload_format="simplesigning"))
    assert len(registry.signatures) == 1
    ref, repository, sent, b64sig, cert, chain = registry.signatures[0]
    assert str(ref) == f"gcr.io/foo/bar@{DIGEST}"
    assert repository == "gcr.io/foo/bar"
    assert sent == payload
    assert base64.b64decode(b64sig) == b"sig"
    assert (cert, chain) == (None, None)


def test_simplesigning_with_cert_and_override(registry):
    cfg = Config()
    cfg.storage.oci.repository = "gcr.io/other/repo"
    cfg.storage.oci.insecure = True
    backend = make_backend(registry, cfg)
    payload = simple_signing_payload("gcr.io/foo/bar", DIGEST)
    opts = StorageOpts(payload_format="simplesigning", cert="cert-pem", chain="chain-pem")
    backend.store_payload(payload, "sig", opts)
    ref, repository, _, _, cert, chain = registry.signatures[0]
    assert repository == "gcr.io/other/repo"
    assert ref.insecure is True
    assert (cert, chain) == ("cert-pem", "chain-pem")


def test_invalid_repository_override(registry):
    cfg = Config()
    cfg.storage.oci.repository = "gcr.io/Not Valid"
    backend = make_backend(registry, cfg)
    payload = simple_signing_payload("gcr.io/foo/bar", DIGEST)
    with pytest.raises(StorageError, match="is not a valid repository"):
        backend.store_payload(payload, "sig", StorageOpts(payload_format="simplesigning"))
    assert registry.signatures == []


def test_simplesigning_missing_digest(registry):
    backend = make_backend(registry)
    payload = simple_signing_payload("gcr.io/foo/bar", "")
    with pytest.raises(StorageError, match="getting digest"):
        backend.store_payload(payload, "sig", StorageOpts(payload_format="simplesigning"))


def test_simplesigning_bad_json(registry):
    backend = make_backend(registry)
    with pytest.raises(StorageError, match="unmarshal simplesigning"):
        backend.store_payload(b"not json", "sig", StorageOpts(payload_format="simplesigning"))


def test_attestation_per_subject(registry):
    statement = {
        "_type": "https://in-toto.io/Statement/v0.1",
        "predicateType": "https://slsa.dev/provenance/v0.1",
        "subject": [
            {"name": "gcr.io/foo/bar", "digest": {"sha256": DIGEST_HEX}},
            {"name": "gcr.io/foo/baz", "digest": {"sha256": "b" * 64}},
        ],
        "predicate": {},
    }
    backend = make_backend(registry)
    backend.store_payload(
        json.dumps(statement).encode(), "envelope", StorageOpts(payload_format="in-toto")
    )
    repositories = [entry[1] for entry in registry.attestations]
    assert repositories == ["gcr.io/foo/bar", "gcr.io/foo/baz"]
    assert registry.attestations[0][2] == b"envelope"
    assert str(registry.attestations[1][0]) == f"gcr.io/foo/baz@sha256:{'b' * 64}"


def test_unsupported_format(registry):
    backend = make_backend(registry)
    with pytest.raises(StorageError, match="only supported for OCI images"):
        backend.store_payload(b"{}", "sig", StorageOpts(payload_format="tekton"))


def test_retrieve_is_unsupported(registry):
    backend = make_backend(registry)
    with pytest.raises(StorageError):
        backend.retrieve_signature(StorageOpts())
    with pytest.raises(StorageError):
        backend.retrieve_payload(StorageOpts())


def test_backend_type(registry):
    assert make_backend(registry).backend_type() == "oci"


@pytest.mark.parametrize(
    "name, repository",
    [
        (f"gcr.io/foo/bar@{DIGEST}", "gcr.io/foo/bar"),
        (f"ubuntu@{DIGEST}", "index.docker.io/library/ubuntu"),
        (f"docker.io/foo/bar@{DIGEST}", "index.docker.io/foo/bar"),
        (f"gcr.io/foo/bar:v1@{DIGEST}", "gcr.io/foo/bar"),
        (f"localhost:5000/img@{DIGEST}", "localhost:5000/img"),
    ],
)
def test_parse_digest_reference(name, repository):
    ref = parse_digest_reference(name, False)
    assert ref.repository() == repository
    assert ref.digest == DIGEST


@pytest.mark.parametrize(
    "name",
    [
        "gcr.io/foo/bar",
        "gcr.io/foo/bar@sha256:abc",
        f"gcr.io/Foo/bar@{DIGEST}",
        f"gcr.io/foo@bar@{DIGEST}",
    ],
)
def test_parse_digest_reference_rejects(name):
    with pytest.raises(StorageError):
        parse_digest_reference(name, False)