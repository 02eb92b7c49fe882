"""Storage backend that attaches signatures and attestations to OCI images."""

from __future__ import annotations

import abc
import base64
import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from chainstore.config import Config, StorageOpts
from chainstore.storage.base import Backend, StorageError, TaskRun

STORAGE_BACKEND_OCI = "oci"
DEFAULT_REGISTRY = "index.docker.io"
DSSE_PAYLOAD_TYPE = "application/vnd.dsse.envelope.v1+json"

_DIGEST_RE = re.compile(r"^sha256:[0-9a-f]{64}$")
_TAG_RE = re.compile(r"^[A-Za-z0-9_.-]{1,128}$")
_REGISTRY_RE = re.compile(r"^[A-Za-z0-9.\-]+(:[0-9]+)?$")
_REPOSITORY_CHARS = frozenset("abcdefghijklmnopqrstuvwxyz0123456789_-./")

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DigestReference:
    """An image named by repository and content digest."""

    registry: str
    repository_path: str
    digest: str
    insecure: bool = False

    def repository(self) -> str:
        """Return the full repository name, registry included."""
        return f"{self.registry}/{self.repository_path}"

    def __str__(self) -> str:
        return f"{self.repository()}@{self.digest}"


def _split_repository(name: str) -> tuple[str, str]:
    """Split a repository name into its registry and path, applying defaults."""
    parts = name.split("/", 1)
    if len(parts) == 2 and ("." in parts[0] or ":" in parts[0] or parts[0] == "localhost"):
        registry, path = parts
    else:
        registry, path = DEFAULT_REGISTRY, name
    if registry == "docker.io":
        registry = DEFAULT_REGISTRY
    if not _REGISTRY_RE.match(registry):
        raise StorageError(f"registries must be valid hostnames, saw: {registry}")
    if registry == DEFAULT_REGISTRY and "/" not in path:
        path = f"library/{path}"
    if not path or any(char not in _REPOSITORY_CHARS for char in path):
        raise StorageError(
            f"repository can only contain the characters "
            f"`{''.join(sorted(_REPOSITORY_CHARS))}`: {path}"
        )
    return registry, path


def _parse_repository(name: str) -> str:
    registry, path = _split_repository(name)
    return f"{registry}/{path}"


def parse_digest_reference(image_name: str, insecure: bool = False) -> DigestReference:
    """Parse repository[:tag]@sha256:<hex>; raise StorageError if it is malformed."""
    parts = image_name.split("@")
    if len(parts) != 2:
        raise StorageError(
            "a digest must contain exactly one '@' separator "
            f"(e.g. registry/repository@digest) saw: {image_name}"
        )
    base, digest = parts
    if not _DIGEST_RE.match(digest):
        raise StorageError(f"invalid digest {digest!r} in {image_name!r}")
    colon = base.rfind(":")
    if colon != -1 and "/" not in base[colon + 1 :]:
        tag = base[colon + 1 :]
        if not _TAG_RE.match(tag):
            raise StorageError(f"invalid tag {tag!r} in {image_name!r}")
        base = base[:colon]
    registry, path = _split_repository(base)
    return DigestReference(registry=registry, repository_path=path, digest=digest, insecure=insecure)


class Registry(abc.ABC):
    """Where signatures and attestations for images are published."""

    @abc.abstractmethod
    def write_signature(
        self,
        ref: DigestReference,
        repository: str,
        payload: bytes,
        b64_signature: str,
        cert: str | None,
        chain: str | None,
    ) -> None:
        """Attach a signature to the image and publish it to the repository."""

    @abc.abstractmethod
    def write_attestation(
        self,
        ref: DigestReference,
        repository: str,
        envelope: bytes,
        cert: str | None,
        chain: str | None,
    ) -> None:
        """Attach a DSSE attestation to the image and publish it to the repository."""


def _lookup(document: Any, *path: str) -> str:
    """Follow path through nested JSON objects; missing fields read as empty."""
    value = document
    for key in path:
        if value is None:
            return ""
        if not isinstance(value, dict):
            raise StorageError(f"unmarshal simplesigning: {key!r} is not inside an object")
        value = value.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise StorageError(f"unmarshal simplesigning: {'.'.join(path)} is not a string")
    return value


def _simple_signing_image_name(raw_payload: bytes) -> str:
    try:
        document = json.loads(raw_payload)
    except ValueError as err:
        raise StorageError(f"unmarshal simplesigning: {err}") from err
    if document is not None and not isinstance(document, dict):
        raise StorageError("unmarshal simplesigning: payload is not an object")
    reference = _lookup(document, "critical", "identity", "docker-reference")
    digest = _lookup(document, "critical", "image", "docker-manifest-digest")
    return f"{reference}@{digest}"


def _attestation_subjects(raw_payload: bytes) -> list[tuple[str, str]]:
    try:
        statement = json.loads(raw_payload)
    except ValueError as err:
        raise StorageError(f"unmarshal attestation: {err}") from err
    if statement is None:
        return []
    if not isinstance(statement, dict):
        raise StorageError("unmarshal attestation: statement is not an object")
    subjects = statement.get("subject") or []
    if not isinstance(subjects, list):
        raise StorageError("unmarshal attestation: subject is not a list")
    result = []
    for subject in subjects:
        if not isinstance(subject, dict):
            raise StorageError("unmarshal attestation: subject entry is not an object")
        name = subject.get("name") or ""
        digests = subject.get("digest") or {}
        if not isinstance(name, str) or not isinstance(digests, dict):
            raise StorageError("unmarshal attestation: malformed subject")
        sha = digests.get("sha256") or ""
        if not isinstance(sha, str):
            raise StorageError("unmarshal attestation: digest is not a string")
        result.append((name, sha))
    return result


class OCIBackend(Backend):
    """Publishes signatures and attestations next to the images they cover."""

    def __init__(self, tr: TaskRun, cfg: Config, registry: Registry) -> None:
        self.tr = tr
        self.cfg = cfg
        self.registry = registry

    def _target_repository(self, ref: DigestReference) -> str:
        override = self.cfg.storage.oci.repository
        if not override:
            return ref.repository()
        try:
            return _parse_repository(override)
        except StorageError as err:
            raise StorageError(f"{override} is not a valid repository: {err}") from err

    def _cert_chain(self, opts: StorageOpts) -> tuple[str | None, str | None]:
        if not opts.cert:
            return None, None
        return opts.cert, opts.chain

    def store_payload(self, raw_payload: bytes, signature: str, opts: StorageOpts) -> None:
        _log.info("Storing payload on TaskRun %s/%s", self.tr.namespace, self.tr.name)
        if opts.payload_format == "simplesigning":
            image_name = _simple_signing_image_name(raw_payload)
            self._upload_signature(image_name, raw_payload, signature, opts)
            return
        if opts.payload_format in ("in-toto", "tekton-provenance"):
            subjects = _attestation_subjects(raw_payload)
            # Happens when the Task does not follow naming hints such as *IMAGE_URL.
            if not subjects:
                raise StorageError("Did not find anything to attest")
            self._upload_attestation(subjects, signature, opts)
            return
        raise StorageError(
            "OCI storage backend is only supported for OCI images and in-toto attestations"
        )

    def _upload_signature(
        self, image_name: str, raw_payload: bytes, signature: str, opts: StorageOpts
    ) -> None:
        _log.info("Uploading %s signature", image_name)
        try:
            ref = parse_digest_reference(image_name, self.cfg.storage.oci.insecure)
        except StorageError as err:
            raise StorageError(f"getting digest: {err}") from err
        repository = self._target_repository(ref)
        cert, chain = self._cert_chain(opts)
        b64_signature = base64.b64encode(signature.encode("utf-8")).decode("ascii")
        self.registry.write_signature(ref, repository, bytes(raw_payload), b64_signature, cert, chain)
        _log.info("Successfully uploaded signature for %s", image_name)

    def _upload_attestation(
        self, subjects: list[tuple[str, str]], signature: str, opts: StorageOpts
    ) -> None:
        _log.info("Starting to upload attestations to OCI ...")
        cert, chain = self._cert_chain(opts)
        for name, sha in subjects:
            image_name = f"{name}@sha256:{sha}"
            _log.info("Starting attestation upload to OCI for %s...", image_name)
            try:
                ref = parse_digest_reference(image_name, self.cfg.storage.oci.insecure)
            except StorageError as err:
                raise StorageError(f"getting digest for subj {image_name}: {err}") from err
            repository = self._target_repository(ref)
            self.registry.write_attestation(
                ref, repository, signature.encode("utf-8"), cert, chain
            )
            _log.info("Successfully uploaded attestation for %s", image_name)

    def backend_type(self) -> str:
        return STORAGE_BACKEND_OCI

    def retrieve_signature(self, opts: StorageOpts) -> str:
        raise StorageError("retrieving signatures is not supported by the OCI backend")

    def retrieve_payload(self, opts: StorageOpts) -> str:
        raise StorageError("retrieving payloads is not supported by the OCI backend")