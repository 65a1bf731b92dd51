"""
Credential stores and the per-pass credential resolver.

A CredentialStore fetches one key of a Secret or ConfigMap. The
CredentialResolver sits on top of it for the duration of one compilation
pass: it caches lookups, turns references into inline values (basic auth,
bearer tokens, OAuth2) or into deterministic file paths (TLS material, which
the agent reads from disk).

A missing object or key raises CredentialNotFound, and a value that must be
inlined as text but is not UTF-8 raises CredentialDecodeError. Either drops
only the endpoint that needed it. Anything else the store raises is a StoreError and
aborts the whole pass.
"""

import base64
import binascii
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional, Union

import httpx

from .errors import CredentialDecodeError, CredentialNotFound, StoreError, ValidationError
from .models import (
    BasicAuth,
    CredentialKind,
    CredentialRef,
    OAuth2,
    TLSConfig,
    ValueSource,
)
from .ordered import FieldList

logger = logging.getLogger(__name__)

DEFAULT_TLS_MOUNT_ROOT = "/etc/vmagent-tls/certs"

SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")


class CredentialStore(ABC):
    """Backing store for Secret and ConfigMap values."""

    @abstractmethod
    def get(self, namespace: str, name: str, key: str, kind: CredentialKind) -> bytes:
        """
        Fetch a single key.

        Raises:
            CredentialNotFound: If the object or the key does not exist
            StoreError: If the store cannot be queried
        """


class InMemoryCredentialStore(CredentialStore):
    """Credential store backed by already loaded Secret and ConfigMap objects."""

    def __init__(self):
        self._objects: dict[tuple[str, str, str], dict[str, bytes]] = {}

    def add(self, kind: CredentialKind, namespace: str, name: str,
            data: dict[str, Union[str, bytes]]) -> None:
        self._objects[(kind.value, namespace, name)] = {
            key: value.encode("utf-8") if isinstance(value, str) else value
            for key, value in data.items()
        }

    def add_secret(self, namespace: str, name: str, data: dict[str, Union[str, bytes]]) -> None:
        self.add(CredentialKind.SECRET, namespace, name, data)

    def add_config_map(self, namespace: str, name: str, data: dict[str, Union[str, bytes]]) -> None:
        self.add(CredentialKind.CONFIG_MAP, namespace, name, data)

    def add_manifest(self, obj: dict[str, Any]) -> None:
        """Register a Secret or ConfigMap manifest, decoding base64 fields."""
        metadata = obj.get("metadata") or {}
        namespace = metadata.get("namespace", "default")
        name = metadata["name"]
        kind = CredentialKind(obj["kind"])
        data = _decode_object_data(obj, kind, f"{namespace}/{name}")
        self._objects[(kind.value, namespace, name)] = data

    @classmethod
    def from_manifests(cls, objects: list[dict[str, Any]]) -> "InMemoryCredentialStore":
        store = cls()
        for obj in objects:
            if obj.get("kind") in ("Secret", "ConfigMap"):
                store.add_manifest(obj)
        return store

    def get(self, namespace: str, name: str, key: str, kind: CredentialKind) -> bytes:
        data = self._objects.get((kind.value, namespace, name))
        if data is None or key not in data:
            raise CredentialNotFound(namespace, name, key, kind.value)
        return data[key]


def _b64decode(value: Any, kind: CredentialKind, qualified_name: str, key: str) -> bytes:
    try:
        return base64.b64decode(str(value), validate=True)
    except binascii.Error as e:
        raise ValidationError(
            f"{kind.value} {qualified_name} key {key!r} is not valid base64: {e}"
        ) from e


def _decode_object_data(obj: dict[str, Any], kind: CredentialKind,
                        qualified_name: str) -> dict[str, bytes]:
    """
    Flatten the data fields of a Secret or ConfigMap into raw bytes.

    Raises:
        ValidationError: If a base64 encoded value cannot be decoded
    """
    data: dict[str, bytes] = {}
    if kind == CredentialKind.SECRET:
        for key, value in (obj.get("data") or {}).items():
            data[key] = _b64decode(value, kind, qualified_name, key)
        for key, value in (obj.get("stringData") or {}).items():
            data[key] = str(value).encode("utf-8")
    else:
        for key, value in (obj.get("data") or {}).items():
            data[key] = str(value).encode("utf-8")
        for key, value in (obj.get("binaryData") or {}).items():
            data[key] = _b64decode(value, kind, qualified_name, key)
    return data


class KubernetesCredentialStore(CredentialStore):
    """
    Credential store reading Secrets and ConfigMaps from the Kubernetes API.

    Example:
        >>> store = KubernetesCredentialStore("https://10.0.0.1:443", token="...")
        >>> store.get("default", "access-creds", "password", CredentialKind.SECRET)
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        verify: Union[bool, str] = True,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the store.

        Args:
            base_url: API server URL
            token: Bearer token used for every request
            verify: TLS verification flag or CA bundle path
            timeout: Request timeout in seconds
            transport: Optional httpx transport, mainly for tests
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.verify = verify
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    @classmethod
    def in_cluster(cls, timeout: float = 30.0) -> "KubernetesCredentialStore":
        """Build a store from the pod service account and environment."""
        host = os.environ.get("KUBERNETES_SERVICE_HOST")
        port = os.environ.get("KUBERNETES_SERVICE_PORT", "443")
        if not host:
            raise StoreError("not running inside a cluster: KUBERNETES_SERVICE_HOST is unset")
        token_path = SERVICE_ACCOUNT_DIR / "token"
        ca_path = SERVICE_ACCOUNT_DIR / "ca.crt"
        try:
            token = token_path.read_text(encoding="utf-8").strip()
        except OSError as e:
            raise StoreError(f"cannot read service account token: {e}")
        verify: Union[bool, str] = str(ca_path) if ca_path.exists() else True
        return cls(f"https://{host}:{port}", token=token, verify=verify, timeout=timeout)

    @property
    def client(self) -> httpx.Client:
        """Get or create the HTTP client."""
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            kwargs: dict[str, Any] = {
                "base_url": self.base_url,
                "timeout": self.timeout,
                "headers": headers,
            }
            if self._transport is not None:
                kwargs["transport"] = self._transport
            else:
                kwargs["verify"] = self.verify
            self._client = httpx.Client(**kwargs)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "KubernetesCredentialStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _object_path(self, namespace: str, name: str, kind: CredentialKind) -> str:
        resource = "secrets" if kind == CredentialKind.SECRET else "configmaps"
        return f"/api/v1/namespaces/{namespace}/{resource}/{name}"

    def get(self, namespace: str, name: str, key: str, kind: CredentialKind) -> bytes:
        path = self._object_path(namespace, name, kind)
        try:
            response = self.client.get(path)
        except httpx.TimeoutException:
            raise StoreError(f"request to {path} timed out after {self.timeout}s")
        except httpx.RequestError as e:
            raise StoreError(f"cannot reach API server at {self.base_url}: {e}")

        if response.status_code == 404:
            raise CredentialNotFound(namespace, name, key, kind.value)
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise StoreError(
                f"HTTP error from {path}: {e.response.status_code}",
                status_code=e.response.status_code,
            )

        try:
            data = _decode_object_data(response.json(), kind, f"{namespace}/{name}")
        except (ValueError, ValidationError) as e:
            raise StoreError(f"malformed {kind.value} returned from {path}: {e}")
        if key not in data:
            raise CredentialNotFound(namespace, name, key, kind.value)
        return data[key]


class CredentialResolver:
    """
    Resolves credential references for one compilation pass.

    Lookups are cached by (kind, namespace, name, key), including negative
    results, so endpoints sharing a Secret hit the store once. The cache is
    safe to use from several worker threads.
    """

    def __init__(self, store: CredentialStore, mount_root: str = DEFAULT_TLS_MOUNT_ROOT):
        self.store = store
        self.mount_root = mount_root.rstrip("/")
        self._cache: dict[tuple[str, str, str, str], Union[bytes, CredentialNotFound]] = {}
        self._lock = threading.Lock()
        self.store_lookups = 0

    def resolve(self, ref: CredentialRef) -> bytes:
        """
        Resolve a reference to its raw value.

        Raises:
            CredentialNotFound: If the reference cannot be resolved
            StoreError: If the backing store fails
        """
        with self._lock:
            cached = self._cache.get(ref.cache_key)
        if cached is None:
            try:
                cached = self.store.get(ref.namespace, ref.name, ref.key, ref.kind)
            except CredentialNotFound as e:
                cached = e
            with self._lock:
                self.store_lookups += 1
                cached = self._cache.setdefault(ref.cache_key, cached)
        if isinstance(cached, CredentialNotFound):
            raise cached
        return cached

    def resolve_text(self, ref: CredentialRef) -> str:
        """
        Resolve a reference to a value inlined into the document.

        Raises:
            CredentialNotFound: If the reference cannot be resolved
            CredentialDecodeError: If the value is not valid UTF-8
            StoreError: If the backing store fails
        """
        try:
            return self.resolve(ref).decode("utf-8")
        except UnicodeDecodeError as e:
            raise CredentialDecodeError(ref.namespace, ref.name, ref.key, ref.kind.value) from e

    def resolve_value(self, source: ValueSource) -> str:
        if source.ref is not None:
            return self.resolve_text(source.ref)
        return source.content or ""

    def tls_path(self, namespace: str, object_name: str, key_or_role: str) -> str:
        return f"{self.mount_root}/{namespace}_{object_name}_{key_or_role}"

    def _tls_file(
        self,
        source: Optional[ValueSource],
        explicit_path: str,
        namespace: str,
        owner_name: str,
        role: str,
        assets: dict[str, bytes],
    ) -> Optional[str]:
        if source is not None and source.ref is not None:
            ref = source.ref
            data = self.resolve(ref)
            path = self.tls_path(ref.namespace, ref.name, ref.key)
        elif source is not None and source.content:
            data = source.content.encode("utf-8")
            path = self.tls_path(namespace, owner_name, role)
        else:
            return explicit_path or None
        assets[path] = data
        return path

    def resolve_tls(self, tls: TLSConfig, namespace: str, owner_name: str,
                    role_prefix: str = "") -> tuple[FieldList, dict[str, bytes]]:
        """
        Build a tls_config stanza.

        Referenced and inline material is mapped to files under the mount
        root. The returned assets map each of those paths to its content.

        Args:
            tls: TLS settings of the endpoint
            namespace: Namespace of the scrape resource
            owner_name: Name of the scrape resource
            role_prefix: Prepended to the role of inline material so that
                every endpoint and stanza of a resource gets its own files
        """
        assets: dict[str, bytes] = {}
        fields = FieldList([("insecure_skip_verify", tls.insecure_skip_verify)])
        fields.add_if("ca_file", self._tls_file(
            tls.ca, tls.ca_file, namespace, owner_name, role_prefix + "ca", assets))
        fields.add_if("cert_file", self._tls_file(
            tls.cert, tls.cert_file, namespace, owner_name, role_prefix + "cert", assets))
        fields.add_if("key_file", self._tls_file(
            tls.key, tls.key_file, namespace, owner_name, role_prefix + "key", assets))
        fields.add_if("server_name", tls.server_name)
        return fields, assets

    def resolve_basic_auth(self, auth: BasicAuth) -> FieldList:
        fields = FieldList()
        if auth.username is not None:
            fields.add("username", self.resolve_text(auth.username))
        if auth.password is not None:
            fields.add("password", self.resolve_text(auth.password))
        elif auth.password_file:
            fields.add("password_file", auth.password_file)
        return fields

    def resolve_bearer_token(self, ref: CredentialRef) -> str:
        return self.resolve_text(ref)

    def resolve_oauth2(self, oauth2: OAuth2) -> FieldList:
        fields = FieldList()
        if oauth2.client_id is not None:
            fields.add_if("client_id", self.resolve_value(oauth2.client_id))
        if oauth2.client_secret is not None:
            fields.add("client_secret", self.resolve_text(oauth2.client_secret))
        elif oauth2.client_secret_file:
            fields.add("client_secret_file", oauth2.client_secret_file)
        fields.add_if("scopes", list(oauth2.scopes))
        fields.add_if("token_url", oauth2.token_url)
        fields.add_if("endpoint_params", dict(oauth2.endpoint_params))
        return fields
