"""
Job synthesis.

Turns every endpoint of a scrape resource into one scrape job: a discovery
stanza for the resource kind, the automatic relabel stages that map
discovery meta labels onto target labels, followed by the user supplied
stages, and the resolved credentials.

The relabel stage sequences and the job field order are part of the output
contract; they must not be reordered.
"""

import dataclasses
import logging
from typing import Callable, Optional

from .credentials import CredentialResolver
from .errors import CredentialError
from .models import (
    CompiledJob,
    DroppedUnit,
    Endpoint,
    JobOutcome,
    ResourceKind,
    ScrapeResource,
    TargetEndpoint,
)
from .ordered import FieldList
from .relabel import (
    render_relabel_rules,
    sanitize_label_name,
    selector_to_relabel_stages,
)

logger = logging.getLogger(__name__)

META = "__meta_kubernetes_"
PROBE_PATH = "/probe"


# Relabel stage helpers

def _keep(source_label: str, regex: str) -> FieldList:
    return FieldList([
        ("action", "keep"),
        ("source_labels", [source_label]),
        ("regex", regex),
    ])


def _copy(source_label: str, target_label: str) -> FieldList:
    return FieldList([
        ("source_labels", [source_label]),
        ("target_label", target_label),
    ])


def _set(target_label: str, replacement: str) -> FieldList:
    return FieldList([
        ("target_label", target_label),
        ("replacement", replacement),
    ])


def _capture(source_label: str, target_label: str) -> FieldList:
    """Copy a label only when it is non-empty."""
    return FieldList([
        ("source_labels", [source_label]),
        ("target_label", target_label),
        ("regex", "(.+)"),
        ("replacement", "${1}"),
    ])


def _target_kind(kind: str, target_label: str) -> FieldList:
    return FieldList([
        ("source_labels", [
            f"{META}endpoint_address_target_kind",
            f"{META}endpoint_address_target_name",
        ]),
        ("separator", ";"),
        ("regex", f"{kind};(.*)"),
        ("replacement", "${1}"),
        ("target_label", target_label),
    ])


def _container_port_keep(target_port: str) -> FieldList:
    if target_port.isdigit():
        return _keep(f"{META}pod_container_port_number", target_port)
    return _keep(f"{META}pod_container_port_name", target_port)


def _label_copies(meta_prefix: str, labels: list[str]) -> list[FieldList]:
    return [
        _capture(f"{meta_prefix}{sanitize_label_name(label)}", sanitize_label_name(label))
        for label in labels
    ]


def _job_override(meta_prefix: str, job_label: str) -> list[FieldList]:
    if not job_label:
        return []
    return [_capture(f"{meta_prefix}{sanitize_label_name(job_label)}", "job")]


def _endpoint_label(endpoint: Endpoint) -> list[FieldList]:
    if not endpoint.port_value:
        return []
    return [_set("endpoint", endpoint.port_value)]


def service_relabel_stages(resource: ScrapeResource, endpoint: Endpoint) -> list[FieldList]:
    stages = []
    if endpoint.port:
        stages.append(_keep(f"{META}endpoint_port_name", endpoint.port))
    elif endpoint.target_port:
        stages.append(_container_port_keep(endpoint.target_port))
    stages.append(_target_kind("Node", "node"))
    stages.append(_target_kind("Pod", "pod"))
    stages.append(_copy(f"{META}pod_name", "pod"))
    stages.append(_copy(f"{META}pod_container_name", "container"))
    stages.append(_copy(f"{META}namespace", "namespace"))
    stages.append(_copy(f"{META}service_name", "service"))
    stages.extend(_label_copies(f"{META}service_label_", resource.target_labels))
    stages.extend(_label_copies(f"{META}pod_label_", resource.pod_target_labels))
    stages.append(FieldList([
        ("source_labels", [f"{META}service_name"]),
        ("target_label", "job"),
        ("replacement", "${1}"),
    ]))
    stages.extend(_job_override(f"{META}service_label_", resource.job_label))
    stages.extend(_endpoint_label(endpoint))
    return stages


def pod_relabel_stages(resource: ScrapeResource, endpoint: Endpoint) -> list[FieldList]:
    stages = [FieldList([
        ("action", "drop"),
        ("source_labels", [f"{META}pod_phase"]),
        ("regex", "(Failed|Succeeded)"),
    ])]
    stages.extend(selector_to_relabel_stages(resource.selector, f"{META}pod_"))
    if endpoint.port:
        stages.append(_keep(f"{META}pod_container_port_name", endpoint.port))
    elif endpoint.target_port:
        stages.append(_container_port_keep(endpoint.target_port))
    stages.append(_copy(f"{META}namespace", "namespace"))
    stages.append(_copy(f"{META}pod_container_name", "container"))
    stages.append(_copy(f"{META}pod_name", "pod"))
    stages.extend(_label_copies(f"{META}pod_label_", resource.pod_target_labels))
    stages.append(_set("job", resource.qualified_name))
    stages.extend(_job_override(f"{META}pod_label_", resource.job_label))
    stages.extend(_endpoint_label(endpoint))
    return stages


def node_relabel_stages(resource: ScrapeResource, endpoint: Endpoint) -> list[FieldList]:
    stages = [_copy(f"{META}node_name", "node")]
    stages.extend(_label_copies(f"{META}node_label_", resource.target_labels))
    stages.append(_set("job", resource.qualified_name))
    stages.extend(_job_override(f"{META}node_label_", resource.job_label))
    return stages


def probe_relabel_stages(resource: ScrapeResource, endpoint: Endpoint) -> list[FieldList]:
    stages = [
        _copy("__address__", "__param_target"),
        _copy("__param_target", "instance"),
    ]
    if resource.prober is not None:
        stages.append(_set("__address__", resource.prober.url))
    return stages


def static_relabel_stages(resource: ScrapeResource, endpoint: Endpoint) -> list[FieldList]:
    return []


# Discovery stanzas

def _namespace_names(resource: ScrapeResource) -> list[str]:
    selector = resource.namespace_selector
    if selector.any:
        return []
    if selector.match_names:
        return list(selector.match_names)
    return [resource.namespace]


def kubernetes_sd_configs(role: str, resource: ScrapeResource) -> list[FieldList]:
    """Discovery stanza; node discovery is cluster scoped and never filtered."""
    sd_config = FieldList([("role", role)])
    if role != "node":
        names = _namespace_names(resource)
        if names:
            sd_config.add("namespaces", FieldList([("names", names)]))
    return [sd_config]


def static_configs(endpoint: Endpoint) -> list[FieldList]:
    targets = endpoint.targets if isinstance(endpoint, TargetEndpoint) else []
    labels = endpoint.labels if isinstance(endpoint, TargetEndpoint) else {}
    static_config = FieldList([("targets", list(targets))])
    static_config.add_if("labels", dict(labels))
    return [static_config]


_DISCOVERY_ROLES = {
    ResourceKind.SERVICE: "endpoints",
    ResourceKind.POD: "pod",
    ResourceKind.NODE: "node",
}

_RELABEL_STAGES: dict[ResourceKind, Callable[[ScrapeResource, Endpoint], list[FieldList]]] = {
    ResourceKind.SERVICE: service_relabel_stages,
    ResourceKind.POD: pod_relabel_stages,
    ResourceKind.NODE: node_relabel_stages,
    ResourceKind.STATIC: static_relabel_stages,
    ResourceKind.PROBE: probe_relabel_stages,
}


class _JobBuilder:
    """Collects the fields of one job and the TLS assets it needs."""

    def __init__(self, resource: ScrapeResource, index: int, endpoint: Endpoint,
                 resolver: CredentialResolver):
        self.resource = resource
        self.index = index
        self.endpoint = endpoint
        self.resolver = resolver
        self.fields = FieldList()
        self.tls_assets: dict[str, bytes] = {}

    def relabel_configs(self) -> list[FieldList]:
        stages = _RELABEL_STAGES[self.resource.kind](self.resource, self.endpoint)
        return stages + render_relabel_rules(self.endpoint.relabel_configs)

    def sample_limit(self) -> Optional[int]:
        return self.endpoint.sample_limit or self.resource.sample_limit or None

    def add_tls(self, key: str, tls, stanza: str = "") -> None:
        # inline material of every endpoint and stanza lands in its own file
        role_prefix = f"{self.resource.kind.value}_ep{self.index}_{stanza}"
        fields, assets = self.resolver.resolve_tls(
            tls, self.resource.namespace, self.resource.name, role_prefix)
        self.fields.add(key, fields)
        self.tls_assets.update(assets)

    def add_auth(self) -> None:
        endpoint = self.endpoint
        if endpoint.tls_config is not None:
            self.add_tls("tls_config", endpoint.tls_config)
        self.fields.add_if("bearer_token_file", endpoint.bearer_token_file)
        if endpoint.bearer_token_secret is not None:
            self.fields.add("bearer_token", self.resolver.resolve_bearer_token(endpoint.bearer_token_secret))
        if endpoint.basic_auth is not None:
            self.fields.add("basic_auth", self.resolver.resolve_basic_auth(endpoint.basic_auth))

    def add_scrape_params(self) -> None:
        params = self.endpoint.scrape_params
        if params is None:
            return
        self.fields.add_if("disable_compression", params.disable_compression)
        self.fields.add_if("disable_keep_alive", params.disable_keep_alive)
        self.fields.add_if("stream_parse", params.stream_parse)
        self.fields.add_if("scrape_align_interval", params.scrape_align_interval)
        self.fields.add_if("scrape_offset", params.scrape_offset)
        proxy = params.proxy_client_config
        if proxy is None:
            return
        if proxy.tls_config is not None:
            self.add_tls("proxy_tls_config", proxy.tls_config, stanza="proxy_")
        if proxy.bearer_token is not None:
            self.fields.add("proxy_bearer_token", self.resolver.resolve_bearer_token(proxy.bearer_token))
        elif proxy.bearer_token_file:
            self.fields.add("proxy_bearer_token_file", proxy.bearer_token_file)
        if proxy.basic_auth is not None:
            self.fields.add("proxy_basic_auth", self.resolver.resolve_basic_auth(proxy.basic_auth))

    def add_oauth2(self) -> None:
        if self.endpoint.oauth2 is not None:
            self.fields.add("oauth2", self.resolver.resolve_oauth2(self.endpoint.oauth2))

    def build_scrape(self) -> FieldList:
        """Job body for service, pod, node and static resources."""
        endpoint = self.endpoint
        kind = self.resource.kind
        self.fields.add("honor_labels", endpoint.honor_labels)
        self.fields.add_if("honor_timestamps", endpoint.honor_timestamps)
        if kind == ResourceKind.STATIC:
            self.fields.add("static_configs", static_configs(endpoint))
        else:
            self.fields.add("kubernetes_sd_configs",
                            kubernetes_sd_configs(_DISCOVERY_ROLES[kind], self.resource))
        self.fields.add_if("scrape_interval", endpoint.interval)
        self.fields.add_if("scrape_timeout", endpoint.scrape_timeout)
        self.fields.add_if("metrics_path", endpoint.path)
        self.fields.add_if("proxy_url", endpoint.proxy_url)
        self.fields.add_if("follow_redirects", endpoint.follow_redirects)
        self.fields.add_if("params", dict(endpoint.params))
        self.fields.add_if("scheme", endpoint.scheme)
        self.add_auth()
        self.fields.add("relabel_configs", self.relabel_configs())
        self.fields.add_if("metric_relabel_configs", render_relabel_rules(endpoint.metric_relabel_configs))
        self.fields.add_if("sample_limit", self.sample_limit())
        self.add_scrape_params()
        self.add_oauth2()
        return self.fields

    def build_probe(self) -> FieldList:
        endpoint = self.endpoint
        prober = self.resource.prober
        self.fields.add("params", FieldList([("module", [self.resource.module])]))
        self.fields.add_if("scrape_interval", endpoint.interval)
        self.fields.add_if("scrape_timeout", endpoint.scrape_timeout)
        self.fields.add("metrics_path", (prober.path if prober else "") or PROBE_PATH)
        self.fields.add_if("scheme", prober.scheme if prober else "")
        self.fields.add("static_configs", static_configs(endpoint))
        self.fields.add("relabel_configs", self.relabel_configs())
        self.fields.add_if("metric_relabel_configs", render_relabel_rules(endpoint.metric_relabel_configs))
        self.add_auth()
        self.fields.add_if("sample_limit", self.sample_limit())
        self.add_oauth2()
        return self.fields


def synthesize_endpoint(
    resource: ScrapeResource,
    index: int,
    endpoint: Endpoint,
    resolver: CredentialResolver,
) -> CompiledJob:
    """
    Build the job for a single endpoint.

    Raises:
        CredentialError: If any credential the endpoint needs is missing or unusable
        StoreError: If the credential store fails
    """
    builder = _JobBuilder(resource, index, endpoint, resolver)
    if resource.kind == ResourceKind.PROBE:
        body = builder.build_probe()
    else:
        body = builder.build_scrape()
    return CompiledJob(
        kind=resource.kind,
        namespace=resource.namespace,
        name=resource.name,
        endpoint_index=index,
        body=body,
        tls_assets=builder.tls_assets,
    )


def synthesize(resource: ScrapeResource, resolver: CredentialResolver) -> list[JobOutcome]:
    """
    Attempt every endpoint of a resource.

    An endpoint whose credentials cannot be resolved or decoded becomes a
    DroppedUnit; its siblings are unaffected. StoreError propagates.
    """
    outcomes: list[JobOutcome] = []
    for index, endpoint in enumerate(resource.endpoints):
        try:
            outcomes.append(synthesize_endpoint(resource, index, endpoint, resolver))
        except CredentialError as e:
            logger.warning(
                "Dropping endpoint %d of %s %s: %s",
                index, resource.kind.value, resource.qualified_name, e,
            )
            outcomes.append(DroppedUnit(
                kind=resource.kind,
                namespace=resource.namespace,
                name=resource.name,
                endpoint_index=index,
                reason=str(e),
            ))
    return outcomes


def assign_job_names(outcomes: list[JobOutcome]) -> list[CompiledJob]:
    """
    Name the surviving jobs of one resource.

    Indices are dense over survivors in declaration order; a dropped
    endpoint does not reserve an index.
    """
    jobs = [outcome for outcome in outcomes if isinstance(outcome, CompiledJob)]
    jobs.sort(key=lambda job: job.endpoint_index)
    return [
        dataclasses.replace(
            job, job_name=f"{job.kind.tag}/{job.namespace}/{job.name}/{position}")
        for position, job in enumerate(jobs)
    ]
