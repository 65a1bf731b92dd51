"""
Data models for the scrape configuration compiler.

This module defines the read-only snapshot of scrape intent resources that a
compilation pass consumes (service, pod, node, static and probe targets with
their endpoints and credential references) and the results it produces.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from .ordered import FieldList


class ResourceKind(Enum):
    """Kinds of scrape intent resources, declared in processing priority order."""

    SERVICE = "service"
    POD = "pod"
    PROBE = "probe"
    NODE = "node"
    STATIC = "static"

    @property
    def tag(self) -> str:
        """Prefix used in generated job names."""
        return _KIND_TAGS[self]

    @property
    def priority(self) -> int:
        return _KIND_PRIORITY[self]


_KIND_TAGS = {
    ResourceKind.SERVICE: "serviceScrape",
    ResourceKind.POD: "podScrape",
    ResourceKind.PROBE: "probe",
    ResourceKind.NODE: "nodeScrape",
    ResourceKind.STATIC: "staticScrape",
}

_KIND_PRIORITY = {kind: index for index, kind in enumerate(ResourceKind)}


class CredentialKind(Enum):
    """Backing object type of a credential reference."""

    SECRET = "Secret"
    CONFIG_MAP = "ConfigMap"


@dataclass(frozen=True)
class CredentialRef:
    """A pointer to one key of a Secret or ConfigMap."""

    namespace: str
    name: str
    key: str
    kind: CredentialKind = CredentialKind.SECRET

    @property
    def cache_key(self) -> tuple[str, str, str, str]:
        return (self.kind.value, self.namespace, self.name, self.key)


@dataclass(frozen=True)
class ValueSource:
    """
    A value taken either from a credential reference or given inline.

    Used for TLS material (CA, certificate, key) and the OAuth2 client id.
    """

    ref: Optional[CredentialRef] = None
    content: Optional[str] = None

    @property
    def is_set(self) -> bool:
        return self.ref is not None or bool(self.content)


@dataclass
class TLSConfig:
    """TLS settings for scraping or for the proxy in front of a target."""

    ca: Optional[ValueSource] = None
    cert: Optional[ValueSource] = None
    key: Optional[ValueSource] = None
    ca_file: str = ""
    cert_file: str = ""
    key_file: str = ""
    server_name: str = ""
    insecure_skip_verify: bool = False


@dataclass
class BasicAuth:
    username: Optional[CredentialRef] = None
    password: Optional[CredentialRef] = None
    password_file: str = ""


@dataclass
class OAuth2:
    client_id: Optional[ValueSource] = None
    client_secret: Optional[CredentialRef] = None
    client_secret_file: str = ""
    token_url: str = ""
    scopes: list[str] = field(default_factory=list)
    endpoint_params: dict[str, str] = field(default_factory=dict)


@dataclass
class ProxyClientConfig:
    """Authentication used when the agent talks to targets through a proxy."""

    tls_config: Optional[TLSConfig] = None
    bearer_token: Optional[CredentialRef] = None
    bearer_token_file: str = ""
    basic_auth: Optional[BasicAuth] = None


@dataclass
class ScrapeParams:
    """Agent-specific scrape tuning knobs."""

    stream_parse: Optional[bool] = None
    scrape_align_interval: str = ""
    scrape_offset: str = ""
    disable_compression: Optional[bool] = None
    disable_keep_alive: Optional[bool] = None
    proxy_client_config: Optional[ProxyClientConfig] = None


@dataclass(frozen=True)
class SelectorRequirement:
    key: str
    operator: str
    values: tuple[str, ...] = ()


@dataclass
class LabelSelector:
    match_labels: dict[str, str] = field(default_factory=dict)
    match_expressions: list[SelectorRequirement] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.match_labels and not self.match_expressions


@dataclass
class NamespaceSelector:
    """Which namespaces the discovery stanza is scoped to."""

    any: bool = False
    match_names: list[str] = field(default_factory=list)


@dataclass
class Endpoint:
    """
    One scrape endpoint of a resource.

    Attributes:
        port: Named service or container port
        target_port: Target port number or name, used when port is unset
        path: Metrics path
        relabel_configs: Raw relabel rules in canonical or legacy field form
        metric_relabel_configs: Raw metric relabel rules, same forms
        sample_limit: Per-endpoint limit, overrides the resource-level one
    """

    port: str = ""
    target_port: str = ""
    path: str = ""
    scheme: str = ""
    interval: str = ""
    scrape_timeout: str = ""
    honor_labels: bool = False
    honor_timestamps: Optional[bool] = None
    params: dict[str, list[str]] = field(default_factory=dict)
    proxy_url: str = ""
    follow_redirects: Optional[bool] = None
    bearer_token_file: str = ""
    bearer_token_secret: Optional[CredentialRef] = None
    basic_auth: Optional[BasicAuth] = None
    oauth2: Optional[OAuth2] = None
    tls_config: Optional[TLSConfig] = None
    relabel_configs: list[dict[str, Any]] = field(default_factory=list)
    metric_relabel_configs: list[dict[str, Any]] = field(default_factory=list)
    sample_limit: int = 0
    scrape_params: Optional[ScrapeParams] = None

    @property
    def port_value(self) -> str:
        return self.port or self.target_port


@dataclass
class TargetEndpoint(Endpoint):
    """An endpoint with an explicit target list (static and probe resources)."""

    targets: list[str] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class ProberSpec:
    """Address of the prober (e.g. a blackbox exporter) a probe goes through."""

    url: str
    scheme: str = ""
    path: str = "/probe"


@dataclass(frozen=True)
class ScrapeResource:
    """
    A read-only snapshot of one scrape intent resource.

    Attributes:
        kind: Resource kind, drives discovery role and relabel stages
        namespace: Resource namespace, also used to resolve credentials
        name: Resource name
        endpoints: Declared endpoints; a node or probe resource has exactly one
        job_label: Target label whose value overrides the job label
        target_labels: Service labels copied onto every target
        pod_target_labels: Pod labels copied onto every target
        sample_limit: Default sample limit for every endpoint
        selector: Pod label selection translated into relabel stages
        namespace_selector: Discovery namespace scoping
        prober: Probe-only prober address
        module: Probe-only prober module
    """

    kind: ResourceKind
    namespace: str
    name: str
    endpoints: list[Endpoint] = field(default_factory=list)
    job_label: str = ""
    target_labels: list[str] = field(default_factory=list)
    pod_target_labels: list[str] = field(default_factory=list)
    sample_limit: int = 0
    selector: LabelSelector = field(default_factory=LabelSelector)
    namespace_selector: NamespaceSelector = field(default_factory=NamespaceSelector)
    prober: Optional[ProberSpec] = None
    module: str = ""

    @property
    def sort_key(self) -> tuple[int, str, str]:
        return (self.kind.priority, self.namespace, self.name)

    @property
    def qualified_name(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class CompiledJob:
    """
    One synthesized scrape job.

    The job name is assigned after all endpoints of the resource have been
    attempted, because its index counts surviving jobs only.
    """

    kind: ResourceKind
    namespace: str
    name: str
    endpoint_index: int
    body: FieldList
    job_name: str = ""
    tls_assets: dict[str, bytes] = field(default_factory=dict)

    def to_fields(self) -> FieldList:
        fields = FieldList([("job_name", self.job_name)])
        fields.extend(self.body)
        return fields


@dataclass
class DroppedUnit:
    """An endpoint left out of the document because a credential is missing."""

    kind: ResourceKind
    namespace: str
    name: str
    endpoint_index: int
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "namespace": self.namespace,
            "name": self.name,
            "endpoint_index": self.endpoint_index,
            "reason": self.reason,
        }


JobOutcome = Union[CompiledJob, DroppedUnit]


@dataclass
class CompilationResult:
    """
    Outcome of a successful compilation pass.

    Attributes:
        document: Serialized scrape configuration
        jobs: Surviving jobs in document order
        dropped: Endpoints dropped because of unresolvable credentials
        tls_assets: Materialized TLS file path to content
    """

    document: bytes
    jobs: list[CompiledJob] = field(default_factory=list)
    dropped: list[DroppedUnit] = field(default_factory=list)
    tls_assets: dict[str, bytes] = field(default_factory=dict)

    @property
    def job_names(self) -> list[str]:
        return [job.job_name for job in self.jobs]

    @property
    def text(self) -> str:
        return self.document.decode("utf-8")
