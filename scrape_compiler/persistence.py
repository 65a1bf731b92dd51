"""
Persistence of the compiled document.

The compiler hands serialized bytes to a Persister; the storage encoding
(compression, wrapping object) is the persister's concern.
"""

import gzip
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from .errors import StoreError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "vmagent.yaml"
GZIPPED_CONFIG_FILENAME = "vmagent.yaml.gz"


class Persister(ABC):
    """Destination for the compiled scrape configuration."""

    @abstractmethod
    def save(self, owner_namespace: str, owner_name: str, document: bytes) -> None:
        """
        Store the document for the given agent instance.

        Raises:
            StoreError: If the document cannot be stored
        """


class MemoryPersister(Persister):
    """Keeps saved documents in a dict keyed by (namespace, name)."""

    def __init__(self):
        self.documents: dict[tuple[str, str], bytes] = {}

    def save(self, owner_namespace: str, owner_name: str, document: bytes) -> None:
        self.documents[(owner_namespace, owner_name)] = document


class FilePersister(Persister):
    """
    Writes the document below a directory, one folder per agent instance.

    With compression enabled the file is gzip encoded with a zero mtime, so
    identical documents produce identical files.
    """

    def __init__(self, directory: Path | str, compress: bool = True):
        self.directory = Path(directory)
        self.compress = compress

    def path_for(self, owner_namespace: str, owner_name: str) -> Path:
        filename = GZIPPED_CONFIG_FILENAME if self.compress else CONFIG_FILENAME
        return self.directory / owner_namespace / owner_name / filename

    def save(self, owner_namespace: str, owner_name: str, document: bytes) -> None:
        path = self.path_for(owner_namespace, owner_name)
        data = gzip.compress(document, mtime=0) if self.compress else document
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(path.name + ".tmp")
            tmp_path.write_bytes(data)
            tmp_path.replace(path)
        except OSError as e:
            raise StoreError(f"cannot write {path}: {e}")
        logger.info("Saved scrape configuration to %s", path)


def read_document(path: Path | str) -> bytes:
    """Read a document written by FilePersister, decompressing if needed."""
    path = Path(path)
    data = path.read_bytes()
    if path.suffix == ".gz":
        return gzip.decompress(data)
    return data


def write_tls_assets(directory: Path | str, assets: dict[str, bytes]) -> list[Path]:
    """
    Write materialized TLS files into directory, keeping their file names.

    The document refers to them below the agent's mount root; this lays out
    the content that gets mounted there.
    """
    directory = Path(directory)
    written = []
    try:
        directory.mkdir(parents=True, exist_ok=True)
        for asset_path in sorted(assets):
            target = directory / Path(asset_path).name
            target.write_bytes(assets[asset_path])
            written.append(target)
    except OSError as e:
        raise StoreError(f"cannot write TLS assets to {directory}: {e}")
    return written
