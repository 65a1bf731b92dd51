"""
Document assembly.

Builds the global section and concatenates the surviving jobs, in
enumeration order, into the final scrape configuration document.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING

from .models import CompiledJob
from .ordered import FieldList, dump_document

if TYPE_CHECKING:
    from .config import CompilerConfig


@dataclass(frozen=True)
class Owner:
    """The agent instance the document is compiled for."""

    namespace: str
    name: str

    @property
    def qualified_name(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> "Owner":
        """Parse ``namespace/name``."""
        namespace, sep, name = value.partition("/")
        if not sep or not namespace or not name:
            raise ValueError(f"owner must look like namespace/name, got {value!r}")
        return cls(namespace=namespace, name=name)


def build_global_section(config: "CompilerConfig", owner: Owner) -> FieldList:
    return FieldList([
        ("scrape_interval", config.scrape_interval),
        ("external_labels", FieldList([
            (config.external_label_name, owner.qualified_name),
        ])),
    ])


def build_document(config: "CompilerConfig", owner: Owner, jobs: list[CompiledJob]) -> FieldList:
    return FieldList([
        ("global", build_global_section(config, owner)),
        ("scrape_configs", [job.to_fields() for job in jobs]),
    ])


def assemble_document(config: "CompilerConfig", owner: Owner, jobs: list[CompiledJob]) -> bytes:
    """Serialize the document; the bytes are handed to the persister unmodified."""
    return dump_document(build_document(config, owner, jobs)).encode("utf-8")
