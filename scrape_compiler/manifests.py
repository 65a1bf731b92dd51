"""
Kubernetes manifest loading.

Reads scrape intent custom resources (VMServiceScrape, VMPodScrape,
VMNodeScrape, VMStaticScrape, VMProbe) plus the Secrets and ConfigMaps they
reference from YAML files and turns them into the compiler's data model.
Field names follow the custom resource definitions (camelCase).
"""

import copy
import logging
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml
from jsonschema import Draft7Validator

from .enumerator import ResourceLister
from .errors import ValidationError
from .models import (
    BasicAuth,
    CredentialKind,
    CredentialRef,
    Endpoint,
    LabelSelector,
    NamespaceSelector,
    OAuth2,
    ProberSpec,
    ProxyClientConfig,
    ResourceKind,
    ScrapeParams,
    ScrapeResource,
    SelectorRequirement,
    TargetEndpoint,
    TLSConfig,
    ValueSource,
)

logger = logging.getLogger(__name__)

MANIFEST_KINDS = {
    "VMServiceScrape": ResourceKind.SERVICE,
    "VMPodScrape": ResourceKind.POD,
    "VMProbe": ResourceKind.PROBE,
    "VMNodeScrape": ResourceKind.NODE,
    "VMStaticScrape": ResourceKind.STATIC,
}

CREDENTIAL_KINDS = ("Secret", "ConfigMap")

SCRAPE_API_VERSION = "operator.victoriametrics.com/v1beta1"

# Set on extra Services created next to a component; the derived default
# selector skips them
ADDITIONAL_SERVICE_LABEL = "operator.victoriametrics.com/additional-service"

_OBJECT_LIST = {"type": "array", "items": {"type": "object"}}
_STRING_LIST = {"type": "array", "items": {"type": "string"}}

_SELECTOR_SCHEMA = {
    "type": "object",
    "properties": {
        "matchLabels": {"type": "object", "additionalProperties": {"type": "string"}},
        "matchExpressions": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["key", "operator"],
                "properties": {
                    "key": {"type": "string"},
                    "operator": {"type": "string"},
                    "values": _STRING_LIST,
                },
            },
        },
    },
}

_ENDPOINT_PROPERTIES = {
    "port": {"type": "string"},
    "targetPort": {"type": ["string", "integer"]},
    "path": {"type": "string"},
    "scheme": {"type": "string"},
    "relabelConfigs": _OBJECT_LIST,
    "metricRelabelConfigs": _OBJECT_LIST,
    "sampleLimit": {"type": "integer", "minimum": 0},
}

_COMMON_SPEC_PROPERTIES = {
    "jobLabel": {"type": "string"},
    "targetLabels": _STRING_LIST,
    "podTargetLabels": _STRING_LIST,
    "sampleLimit": {"type": "integer", "minimum": 0},
    "selector": _SELECTOR_SCHEMA,
    "namespaceSelector": {
        "type": "object",
        "properties": {
            "any": {"type": "boolean"},
            "matchNames": _STRING_LIST,
        },
    },
}

# JSON Schema for the envelope of every scrape manifest
MANIFEST_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["kind", "metadata"],
    "properties": {
        "apiVersion": {"type": "string"},
        "kind": {"type": "string", "enum": list(MANIFEST_KINDS)},
        "metadata": {
            "type": "object",
            "required": ["name"],
            "properties": {
                "name": {"type": "string", "minLength": 1},
                "namespace": {"type": "string", "minLength": 1},
            },
        },
        "spec": {"type": "object"},
    },
}

SPEC_SCHEMAS = {
    "VMServiceScrape": {
        "type": "object",
        "properties": {
            **_COMMON_SPEC_PROPERTIES,
            "endpoints": {"type": "array", "items": {
                "type": "object", "properties": _ENDPOINT_PROPERTIES}},
        },
    },
    "VMPodScrape": {
        "type": "object",
        "properties": {
            **_COMMON_SPEC_PROPERTIES,
            "podMetricsEndpoints": {"type": "array", "items": {
                "type": "object", "properties": _ENDPOINT_PROPERTIES}},
        },
    },
    "VMNodeScrape": {
        "type": "object",
        "properties": {**_COMMON_SPEC_PROPERTIES, **_ENDPOINT_PROPERTIES},
    },
    "VMStaticScrape": {
        "type": "object",
        "properties": {
            "sampleLimit": {"type": "integer", "minimum": 0},
            "targetEndpoints": {"type": "array", "items": {
                "type": "object",
                "properties": {
                    **_ENDPOINT_PROPERTIES,
                    "targets": _STRING_LIST,
                    "labels": {"type": "object", "additionalProperties": {"type": "string"}},
                },
            }},
        },
    },
    "VMProbe": {
        "type": "object",
        "required": ["vmProberSpec"],
        "properties": {
            "module": {"type": "string"},
            "vmProberSpec": {
                "type": "object",
                "required": ["url"],
                "properties": {
                    "url": {"type": "string", "minLength": 1},
                    "scheme": {"type": "string"},
                    "path": {"type": "string"},
                },
            },
            "targets": {"type": "object"},
            "sampleLimit": {"type": "integer", "minimum": 0},
        },
    },
}


def _schema_errors(schema: dict[str, Any], data: Any, prefix: str) -> list[str]:
    errors = []
    for error in Draft7Validator(schema).iter_errors(data):
        path = ".".join(str(p) for p in error.path)
        location = f"{prefix}.{path}" if path else prefix
        errors.append(f"{location}: {error.message}")
    return errors


def validate_manifest(obj: Any) -> list[str]:
    """
    Validate a scrape manifest against its schema.

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = _schema_errors(MANIFEST_SCHEMA, obj, "root")
    if errors:
        return errors
    return _schema_errors(SPEC_SCHEMAS[obj["kind"]], obj.get("spec") or {}, "spec")


def load_manifests(paths: Iterable[Path | str]) -> list[dict[str, Any]]:
    """
    Read every YAML document from the given files.

    ``kind: List`` documents are flattened into their items; empty documents
    are skipped.

    Raises:
        FileNotFoundError: If a manifest file doesn't exist
        ValidationError: If a file is not valid YAML or holds a document
            that is not a mapping
    """
    objects: list[dict[str, Any]] = []
    for path in paths:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Manifest file not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            try:
                documents = list(yaml.safe_load_all(f))
            except yaml.YAMLError as e:
                raise ValidationError(f"Invalid YAML in {path}", errors=[str(e)]) from e
        for number, document in enumerate(documents, start=1):
            if not document:
                continue
            if not isinstance(document, dict):
                raise ValidationError(
                    f"Invalid manifest in {path}",
                    errors=[f"document {number}: expected a mapping, got {type(document).__name__}"],
                )
            if document.get("kind") == "List":
                items = document.get("items") or []
                if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
                    raise ValidationError(
                        f"Invalid manifest in {path}",
                        errors=[f"document {number}: List items must be mappings"],
                    )
                objects.extend(items)
            else:
                objects.append(document)
    logger.debug("Loaded %d object(s)", len(objects))
    return objects


# Field parsers

def _secret_ref(data: Optional[dict[str, Any]], namespace: str,
                kind: CredentialKind = CredentialKind.SECRET) -> Optional[CredentialRef]:
    if not data:
        return None
    return CredentialRef(namespace=namespace, name=data["name"], key=data["key"], kind=kind)


def _value_source(data: Optional[dict[str, Any]], namespace: str) -> Optional[ValueSource]:
    """Parse a secret / configMap / inline content selector."""
    if not data:
        return None
    if data.get("secret"):
        return ValueSource(ref=_secret_ref(data["secret"], namespace))
    if data.get("configMap"):
        return ValueSource(ref=_secret_ref(data["configMap"], namespace, CredentialKind.CONFIG_MAP))
    if data.get("content"):
        return ValueSource(content=str(data["content"]))
    return None


def parse_tls_config(data: Optional[dict[str, Any]], namespace: str) -> Optional[TLSConfig]:
    if not data:
        return None
    key = _value_source(data.get("key"), namespace)
    if key is None and data.get("keySecret"):
        key = ValueSource(ref=_secret_ref(data["keySecret"], namespace))
    return TLSConfig(
        ca=_value_source(data.get("ca"), namespace),
        cert=_value_source(data.get("cert"), namespace),
        key=key,
        ca_file=data.get("caFile", ""),
        cert_file=data.get("certFile", ""),
        key_file=data.get("keyFile", ""),
        server_name=data.get("serverName", ""),
        insecure_skip_verify=bool(data.get("insecureSkipVerify", False)),
    )


def parse_basic_auth(data: Optional[dict[str, Any]], namespace: str) -> Optional[BasicAuth]:
    if not data:
        return None
    return BasicAuth(
        username=_secret_ref(data.get("username"), namespace),
        password=_secret_ref(data.get("password"), namespace),
        password_file=data.get("password_file", ""),
    )


def parse_oauth2(data: Optional[dict[str, Any]], namespace: str) -> Optional[OAuth2]:
    if not data:
        return None
    return OAuth2(
        client_id=_value_source(data.get("client_id"), namespace),
        client_secret=_secret_ref(data.get("client_secret"), namespace),
        client_secret_file=data.get("client_secret_file", ""),
        token_url=data.get("token_url", ""),
        scopes=list(data.get("scopes") or []),
        endpoint_params=dict(data.get("endpoint_params") or {}),
    )


def parse_scrape_params(data: Optional[dict[str, Any]], namespace: str) -> Optional[ScrapeParams]:
    if not data:
        return None
    proxy = None
    proxy_data = data.get("proxy_client_config")
    if proxy_data:
        proxy = ProxyClientConfig(
            tls_config=parse_tls_config(proxy_data.get("tls_config"), namespace),
            bearer_token=_secret_ref(proxy_data.get("bearer_token"), namespace),
            bearer_token_file=proxy_data.get("bearer_token_file", ""),
            basic_auth=parse_basic_auth(proxy_data.get("basic_auth"), namespace),
        )
    return ScrapeParams(
        stream_parse=data.get("stream_parse"),
        scrape_align_interval=data.get("scrape_align_interval", ""),
        scrape_offset=data.get("scrape_offset", ""),
        disable_compression=data.get("disable_compression"),
        disable_keep_alive=data.get("disable_keep_alive"),
        proxy_client_config=proxy,
    )


def _endpoint_kwargs(data: dict[str, Any], namespace: str) -> dict[str, Any]:
    target_port = data.get("targetPort", "")
    return {
        "port": str(data.get("port", "")),
        "target_port": str(target_port) if target_port != "" else "",
        "path": data.get("path", ""),
        "scheme": data.get("scheme", ""),
        "interval": data.get("interval", ""),
        "scrape_timeout": data.get("scrapeTimeout", ""),
        "honor_labels": bool(data.get("honorLabels", False)),
        "honor_timestamps": data.get("honorTimestamps"),
        "params": {k: list(v) for k, v in (data.get("params") or {}).items()},
        "proxy_url": data.get("proxyURL", ""),
        "follow_redirects": data.get("follow_redirects"),
        "bearer_token_file": data.get("bearerTokenFile", ""),
        "bearer_token_secret": _secret_ref(data.get("bearerTokenSecret"), namespace),
        "basic_auth": parse_basic_auth(data.get("basicAuth"), namespace),
        "oauth2": parse_oauth2(data.get("oauth2"), namespace),
        "tls_config": parse_tls_config(data.get("tlsConfig"), namespace),
        "relabel_configs": list(data.get("relabelConfigs") or []),
        "metric_relabel_configs": list(data.get("metricRelabelConfigs") or []),
        "sample_limit": int(data.get("sampleLimit", 0) or 0),
        "scrape_params": parse_scrape_params(data.get("vm_scrape_params"), namespace),
    }


def parse_endpoint(data: dict[str, Any], namespace: str) -> Endpoint:
    return Endpoint(**_endpoint_kwargs(data, namespace))


def parse_target_endpoint(data: dict[str, Any], namespace: str) -> TargetEndpoint:
    return TargetEndpoint(
        targets=[str(t) for t in data.get("targets") or []],
        labels={str(k): str(v) for k, v in (data.get("labels") or {}).items()},
        **_endpoint_kwargs(data, namespace),
    )


def parse_selector(data: Optional[dict[str, Any]]) -> LabelSelector:
    data = data or {}
    return LabelSelector(
        match_labels=dict(data.get("matchLabels") or {}),
        match_expressions=[
            SelectorRequirement(
                key=expr["key"],
                operator=expr["operator"],
                values=tuple(expr.get("values") or ()),
            )
            for expr in data.get("matchExpressions") or []
        ],
    )


def parse_namespace_selector(data: Optional[dict[str, Any]]) -> NamespaceSelector:
    data = data or {}
    return NamespaceSelector(
        any=bool(data.get("any", False)),
        match_names=list(data.get("matchNames") or []),
    )


def _probe_endpoint(spec: dict[str, Any], namespace: str) -> TargetEndpoint:
    static = (spec.get("targets") or {}).get("staticConfig") or {}
    data = dict(spec)
    data["targets"] = static.get("targets") or []
    data["labels"] = static.get("labels") or {}
    data["relabelConfigs"] = static.get("relabelingConfigs") or []
    # the prober owns path, scheme and port of a probe job
    for key in ("path", "scheme", "port", "targetPort"):
        data.pop(key, None)
    return parse_target_endpoint(data, namespace)


def parse_resource(obj: dict[str, Any], validate: bool = True) -> ScrapeResource:
    """
    Convert a scrape manifest into a ScrapeResource.

    Raises:
        ValidationError: If validation is enabled and the manifest is invalid
    """
    if validate:
        errors = validate_manifest(obj)
        if errors:
            name = (obj.get("metadata") or {}).get("name", "<unnamed>") if isinstance(obj, dict) else "<invalid>"
            raise ValidationError(
                f"Manifest {name} failed validation with {len(errors)} error(s)",
                errors=errors,
            )

    kind = MANIFEST_KINDS[obj["kind"]]
    metadata = obj["metadata"]
    namespace = metadata.get("namespace", "default")
    spec = obj.get("spec") or {}

    if kind == ResourceKind.SERVICE:
        endpoints = [parse_endpoint(ep, namespace) for ep in spec.get("endpoints") or []]
    elif kind == ResourceKind.POD:
        endpoints = [parse_endpoint(ep, namespace) for ep in spec.get("podMetricsEndpoints") or []]
    elif kind == ResourceKind.NODE:
        endpoints = [parse_endpoint(spec, namespace)]
    elif kind == ResourceKind.STATIC:
        endpoints = [parse_target_endpoint(ep, namespace) for ep in spec.get("targetEndpoints") or []]
    else:
        endpoints = [_probe_endpoint(spec, namespace)]

    prober = None
    prober_data = spec.get("vmProberSpec")
    if kind == ResourceKind.PROBE and prober_data:
        prober = ProberSpec(
            url=prober_data["url"],
            scheme=prober_data.get("scheme", ""),
            path=prober_data.get("path") or "/probe",
        )

    return ScrapeResource(
        kind=kind,
        namespace=namespace,
        name=metadata["name"],
        endpoints=endpoints,
        job_label=spec.get("jobLabel", ""),
        target_labels=list(spec.get("targetLabels") or []),
        pod_target_labels=list(spec.get("podTargetLabels") or []),
        sample_limit=int(spec.get("sampleLimit", 0) or 0),
        selector=parse_selector(spec.get("selector")),
        namespace_selector=parse_namespace_selector(spec.get("namespaceSelector")),
        prober=prober,
        module=spec.get("module", ""),
    )


def service_scrape_for_service(
    service: dict[str, Any],
    spec: Optional[dict[str, Any]] = None,
    metrics_path: str = "",
    filter_port_names: Iterable[str] = (),
) -> dict[str, Any]:
    """
    Derive a VMServiceScrape manifest from a Service manifest.

    Every port of the Service becomes an endpoint scraping ``metrics_path``.
    Endpoints already present in ``spec`` are matched by port name: a match
    keeps its own settings and only gets the path filled in when it has
    none. Without a user supplied selector, the Service's own selector is
    used, excluding Services marked with ADDITIONAL_SERVICE_LABEL.

    Args:
        service: Service manifest
        spec: Optional VMServiceScrape spec to merge into; it is not modified
        metrics_path: Path scraped on every generated endpoint
        filter_port_names: When given, only ports with these names are used

    Returns:
        VMServiceScrape manifest with the Service's name and namespace
    """
    metadata = service.get("metadata") or {}
    service_spec = service.get("spec") or {}
    filter_port_names = set(filter_port_names)

    generated = []
    for port in service_spec.get("ports") or []:
        name = port.get("name", "")
        if filter_port_names and name not in filter_port_names:
            continue
        endpoint = {"port": name}
        if metrics_path:
            endpoint["path"] = metrics_path
        generated.append(endpoint)

    scrape_spec = copy.deepcopy(spec) if spec else {}
    endpoints = scrape_spec.get("endpoints") or []
    for endpoint in generated:
        matches = [ep for ep in endpoints if ep.get("port", "") == endpoint["port"]]
        for ep in matches:
            if metrics_path and not ep.get("path"):
                ep["path"] = metrics_path
        if not matches:
            endpoints.append(endpoint)
    if endpoints:
        scrape_spec["endpoints"] = endpoints

    selector = scrape_spec.get("selector") or {}
    if selector.get("matchLabels") is None and selector.get("matchExpressions") is None:
        selector = {}
        if service_spec.get("selector"):
            selector["matchLabels"] = dict(service_spec["selector"])
        selector["matchExpressions"] = [
            {"key": ADDITIONAL_SERVICE_LABEL, "operator": "DoesNotExist"},
        ]
        scrape_spec["selector"] = selector

    scrape_metadata = {"name": metadata["name"]}
    for key in ("namespace", "ownerReferences", "labels", "annotations"):
        if metadata.get(key):
            scrape_metadata[key] = copy.deepcopy(metadata[key])

    return {
        "apiVersion": SCRAPE_API_VERSION,
        "kind": "VMServiceScrape",
        "metadata": scrape_metadata,
        "spec": scrape_spec,
    }


class ManifestLister(ResourceLister):
    """Lister over scrape resources parsed from manifests."""

    def __init__(self, resources: Iterable[ScrapeResource]):
        self._resources = list(resources)

    @classmethod
    def from_objects(cls, objects: Iterable[dict[str, Any]], validate: bool = True) -> "ManifestLister":
        """Parse every scrape manifest; other kinds are ignored."""
        resources = [
            parse_resource(obj, validate=validate)
            for obj in objects
            if obj.get("kind") in MANIFEST_KINDS
        ]
        return cls(resources)

    def list(self, kind: ResourceKind) -> list[ScrapeResource]:
        return [resource for resource in self._resources if resource.kind == kind]
