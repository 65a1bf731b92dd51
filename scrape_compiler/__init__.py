"""
Scrape configuration compiler.

Compiles scrape intent resources (service, pod, node, static and probe
scrapes) into a single deterministic scrape configuration document for a
metrics agent instance.
"""

from .assembler import Owner, assemble_document
from .compiler import ScrapeConfigCompiler, compile_scrape_config
from .config import CompilerConfig, load_config
from .credentials import (
    CredentialResolver,
    CredentialStore,
    InMemoryCredentialStore,
    KubernetesCredentialStore,
)
from .errors import (
    CompilerError,
    CredentialDecodeError,
    CredentialError,
    CredentialNotFound,
    StoreError,
    ValidationError,
)
from .models import CompilationResult, ResourceKind, ScrapeResource

__version__ = "0.1.0"

__all__ = [
    "CompilationResult",
    "CompilerConfig",
    "CompilerError",
    "CredentialDecodeError",
    "CredentialError",
    "CredentialNotFound",
    "CredentialResolver",
    "CredentialStore",
    "InMemoryCredentialStore",
    "KubernetesCredentialStore",
    "Owner",
    "ResourceKind",
    "ScrapeConfigCompiler",
    "ScrapeResource",
    "StoreError",
    "ValidationError",
    "assemble_document",
    "compile_scrape_config",
    "load_config",
]
