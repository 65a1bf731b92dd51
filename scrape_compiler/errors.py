"""
Exception taxonomy for the scrape configuration compiler.

Only StoreError is allowed to escape a compilation pass. CredentialError
and its subclasses are local to a single endpoint and are turned into a
dropped job by the synthesizer.
"""

from typing import Optional


class CompilerError(Exception):
    """Base exception for all compiler errors."""
    pass


class CredentialError(CompilerError):
    """A credential an endpoint needs cannot be used; only that endpoint is dropped."""
    pass


class CredentialNotFound(CredentialError):
    """Raised when a referenced Secret/ConfigMap or one of its keys is absent."""

    def __init__(self, namespace: str, name: str, key: str, kind: str):
        super().__init__(f"cannot find {kind} {namespace}/{name} key {key!r}")
        self.namespace = namespace
        self.name = name
        self.key = key
        self.kind = kind


class CredentialDecodeError(CredentialError):
    """Raised when a value that must be inlined as text is not valid UTF-8."""

    def __init__(self, namespace: str, name: str, key: str, kind: str):
        super().__init__(f"{kind} {namespace}/{name} key {key!r} is not valid UTF-8")
        self.namespace = namespace
        self.name = name
        self.key = key
        self.kind = kind


class StoreError(CompilerError):
    """Raised when the lister, credential store or persister cannot be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ValidationError(CompilerError):
    """Raised when a manifest or configuration fails schema validation."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []
