"""Configuration that decides how artifacts are formatted, signed and stored."""

from __future__ import annotations

import contextlib
import contextvars
import copy
import json
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterator, Mapping

CHAINS_CONFIG = "chains-config"

TASKRUN_FORMAT_KEY = "artifacts.taskrun.format"
TASKRUN_STORAGE_KEY = "artifacts.taskrun.storage"
TASKRUN_SIGNER_KEY = "artifacts.taskrun.signer"

OCI_FORMAT_KEY = "artifacts.oci.format"
OCI_STORAGE_KEY = "artifacts.oci.storage"
OCI_SIGNER_KEY = "artifacts.oci.signer"

GCS_BUCKET_KEY = "storage.gcs.bucket"
OCI_REPOSITORY_KEY = "storage.oci.repository"
OCI_REPOSITORY_INSECURE_KEY = "storage.oci.repository.insecure"
DOCDB_URL_KEY = "storage.docdb.url"

KMS_SIGNER_KMSREF_KEY = "signers.kms.kmsref"
X509_FULCIO_ENABLED_KEY = "signers.x509.fulcio.enabled"
X509_FULCIO_AUTH_KEY = "signers.x509.fulcio.auth"
X509_FULCIO_ADDR_KEY = "signers.x509.fulcio.address"

BUILDER_ID_KEY = "builder.id"

TRANSPARENCY_ENABLED_KEY = "transparency.enabled"
TRANSPARENCY_URL_KEY = "transparency.url"

_STORAGE_CHOICES = ("tekton", "oci", "gcs", "docdb")
_SIGNER_CHOICES = ("x509", "kms")

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})


class ConfigError(ValueError):
    """Raised when configuration data holds an unsupported value."""


@dataclass
class Artifact:
    """How to format, sign and store one kind of artifact."""

    format: str = ""
    storage_backend: str = ""
    signer: str = ""


@dataclass
class ArtifactConfigs:
    task_runs: Artifact = field(default_factory=Artifact)
    oci: Artifact = field(default_factory=Artifact)


@dataclass
class GCSStorageConfig:
    bucket: str = ""


@dataclass
class OCIStorageConfig:
    repository: str = ""
    insecure: bool = False


@dataclass
class TektonStorageConfig:
    """The TaskRun annotation store needs no settings."""


@dataclass
class DocDBStorageConfig:
    url: str = ""


@dataclass
class StorageConfigs:
    gcs: GCSStorageConfig = field(default_factory=GCSStorageConfig)
    oci: OCIStorageConfig = field(default_factory=OCIStorageConfig)
    tekton: TektonStorageConfig = field(default_factory=TektonStorageConfig)
    docdb: DocDBStorageConfig = field(default_factory=DocDBStorageConfig)


@dataclass
class X509Signer:
    fulcio_enabled: bool = False
    fulcio_addr: str = ""
    fulcio_auth: str = ""


@dataclass
class KMSSigner:
    kms_ref: str = ""


@dataclass
class SignerConfigs:
    x509: X509Signer = field(default_factory=X509Signer)
    kms: KMSSigner = field(default_factory=KMSSigner)


@dataclass
class BuilderConfig:
    id: str = ""


@dataclass
class TransparencyConfig:
    enabled: bool = False
    verify_annotation: bool = False
    url: str = ""


@dataclass
class Config:
    artifacts: ArtifactConfigs = field(default_factory=ArtifactConfigs)
    storage: StorageConfigs = field(default_factory=StorageConfigs)
    signers: SignerConfigs = field(default_factory=SignerConfigs)
    builder: BuilderConfig = field(default_factory=BuilderConfig)
    transparency: TransparencyConfig = field(default_factory=TransparencyConfig)


@dataclass
class StorageOpts:
    """Extra information needed when storing a signature."""

    key: str = ""
    cert: str = ""
    chain: str = ""
    payload_format: str = ""


def default_config() -> Config:
    """Return the configuration used when no keys are set."""
    return Config(
        artifacts=ArtifactConfigs(
            task_runs=Artifact(format="tekton", storage_backend="tekton", signer="x509"),
            oci=Artifact(format="simplesigning", storage_backend="oci", signer="x509"),
        ),
        transparency=TransparencyConfig(url="https://rekor.sigstore.dev"),
        signers=SignerConfigs(
            x509=X509Signer(
                fulcio_auth="google",
                fulcio_addr="https://fulcio.sigstore.dev",
            )
        ),
        builder=BuilderConfig(id="tekton-chains"),
    )


def _as_string(data: Mapping[str, str], key: str, current: str, *allowed: str) -> str:
    if key not in data:
        return current
    raw = data[key]
    if allowed and raw not in allowed:
        choices = " ".join(sorted(set(allowed)))
        quoted = json.dumps(raw, ensure_ascii=False)
        raise ConfigError(
            f"failed to parse data: invalid value {quoted} wanted one of [{choices}]"
        )
    return raw


def _as_bool(data: Mapping[str, str], key: str, current: bool) -> bool:
    raw = data.get(key)
    if raw in _TRUE_WORDS:
        return True
    if raw in _FALSE_WORDS:
        return False
    return current


def _one_of(data: Mapping[str, str], key: str, current: bool, *values: str) -> bool:
    """Turn the flag on when the key holds one of the values; never turn it off."""
    if key in data and data[key] in values:
        return True
    return current


def new_config_from_map(data: Mapping[str, str]) -> Config:
    """Build a Config from key/value data, starting from the defaults."""
    cfg = default_config()

    task_runs = cfg.artifacts.task_runs
    task_runs.format = _as_string(
        data, TASKRUN_FORMAT_KEY, task_runs.format, "tekton", "in-toto", "tekton-provenance"
    )
    task_runs.storage_backend = _as_string(
        data, TASKRUN_STORAGE_KEY, task_runs.storage_backend, *_STORAGE_CHOICES
    )
    task_runs.signer = _as_string(data, TASKRUN_SIGNER_KEY, task_runs.signer, *_SIGNER_CHOICES)

    oci = cfg.artifacts.oci
    oci.format = _as_string(data, OCI_FORMAT_KEY, oci.format, "tekton", "simplesigning")
    oci.storage_backend = _as_string(
        data, OCI_STORAGE_KEY, oci.storage_backend, *_STORAGE_CHOICES
    )
    oci.signer = _as_string(data, OCI_SIGNER_KEY, oci.signer, *_SIGNER_CHOICES)

    storage = cfg.storage
    storage.gcs.bucket = _as_string(data, GCS_BUCKET_KEY, storage.gcs.bucket)
    storage.oci.repository = _as_string(data, OCI_REPOSITORY_KEY, storage.oci.repository)
    storage.oci.insecure = _as_bool(data, OCI_REPOSITORY_INSECURE_KEY, storage.oci.insecure)
    storage.docdb.url = _as_string(data, DOCDB_URL_KEY, storage.docdb.url)

    transparency = cfg.transparency
    transparency.enabled = _one_of(
        data, TRANSPARENCY_ENABLED_KEY, transparency.enabled, "true", "manual"
    )
    transparency.verify_annotation = _one_of(
        data, TRANSPARENCY_ENABLED_KEY, transparency.verify_annotation, "manual"
    )
    transparency.url = _as_string(data, TRANSPARENCY_URL_KEY, transparency.url)

    signers = cfg.signers
    signers.kms.kms_ref = _as_string(data, KMS_SIGNER_KMSREF_KEY, signers.kms.kms_ref)
    signers.x509.fulcio_enabled = _as_bool(
        data, X509_FULCIO_ENABLED_KEY, signers.x509.fulcio_enabled
    )
    signers.x509.fulcio_auth = _as_string(data, X509_FULCIO_AUTH_KEY, signers.x509.fulcio_auth)
    signers.x509.fulcio_addr = _as_string(data, X509_FULCIO_ADDR_KEY, signers.x509.fulcio_addr)

    cfg.builder.id = _as_string(data, BUILDER_ID_KEY, cfg.builder.id)
    return cfg


_current: contextvars.ContextVar[Config] = contextvars.ContextVar("chainstore_config")


def current_config() -> Config:
    """Return the configuration active in the current context."""
    try:
        return _current.get()
    except LookupError:
        raise LookupError("no configuration is active") from None


@contextlib.contextmanager
def use_config(cfg: Config) -> Iterator[Config]:
    """Make cfg the active configuration for the duration of the block."""
    token = _current.set(cfg)
    try:
        yield cfg
    finally:
        _current.reset(token)


class ConfigStore:
    """Holds the latest configuration and hands out independent copies."""

    def __init__(self, *args: Callable[[str, Config], object]) -> None:
        self._on_after_store = list(args)
        self._lock = threading.Lock()
        self._config: Config | None = None

    def on_config_changed(self, data: Mapping[str, str]) -> None:
        """Parse new configuration data and store it; bad data leaves the old one."""
        cfg = new_config_from_map(data or {})
        with self._lock:
            self._config = cfg
        for callback in self._on_after_store:
            callback(CHAINS_CONFIG, cfg)

    def load(self) -> Config:
        """Return a copy of the stored configuration."""
        with self._lock:
            cfg = self._config
        if cfg is None:
            raise LookupError(f"no {CHAINS_CONFIG} has been stored")
        return copy.deepcopy(cfg)

    @contextlib.contextmanager
    def activate(self) -> Iterator[Config]:
        """Make a copy of the stored configuration active for the block."""
        with use_config(self.load()) as cfg:
            yield cfg