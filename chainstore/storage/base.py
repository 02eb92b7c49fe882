"""Common types for signature storage backends."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field

from chainstore.config import StorageOpts


class StorageError(Exception):
    """Raised when a backend cannot store or retrieve data."""


@dataclass
class TaskRun:
    """The parts of a TaskRun that storage backends need."""

    namespace: str = ""
    name: str = ""
    uid: str = ""
    annotations: dict[str, str] = field(default_factory=dict)
    service_account_name: str = ""


class Backend(abc.ABC):
    """A place to store signed payloads and their signatures."""

    @abc.abstractmethod
    def store_payload(self, raw_payload: bytes, signature: str, opts: StorageOpts) -> None:
        """Store a payload together with its signature."""

    @abc.abstractmethod
    def retrieve_payload(self, opts: StorageOpts) -> str:
        """Return the payload stored under the options' key."""

    @abc.abstractmethod
    def retrieve_signature(self, opts: StorageOpts) -> str:
        """Return the signature stored under the options' key."""

    @abc.abstractmethod
    def backend_type(self) -> str:
        """Return the name of this kind of backend."""