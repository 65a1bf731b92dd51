"""
Relabel rule normalization and label selector translation.

User supplied relabel rules arrive either with canonical camelCase field
names (sourceLabels, targetLabel) or with the legacy snake_case aliases
(source_labels, target_label). Both are folded into one RelabelRule before
anything else looks at them. When a rule carries both spellings of a field,
the legacy alias wins.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from .models import LabelSelector
from .ordered import FieldList

# canonical name -> legacy alias
FIELD_ALIASES = {
    "sourceLabels": "source_labels",
    "targetLabel": "target_label",
}

_INVALID_LABEL_CHARS = re.compile(r"[^a-zA-Z0-9_]")


@dataclass
class RelabelRule:
    """A relabel rule in its single canonical shape."""

    source_labels: Any = field(default_factory=list)
    target_label: Optional[str] = None
    action: Optional[str] = None
    match: Optional[str] = None
    labels: Any = field(default_factory=dict)
    regex: Optional[str] = None
    separator: Optional[str] = None
    replacement: Optional[str] = None
    modulus: Optional[Any] = None
    condition: Optional[str] = None


def _pick(raw: Mapping[str, Any], canonical: str) -> Any:
    alias = FIELD_ALIASES.get(canonical)
    if alias is not None and raw.get(alias) is not None:
        return raw[alias]
    return raw.get(canonical)


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _modulus(value: Any) -> Any:
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return value


def normalize_relabel_rule(raw: Mapping[str, Any]) -> RelabelRule:
    """
    Fold a raw relabel mapping into a RelabelRule.

    Values are not validated; unknown actions, malformed regexes and values
    of the wrong shape (a non-integer modulus, labels that are not a
    mapping) are carried through to the document untouched.
    """
    source_labels = _pick(raw, "sourceLabels") or []
    labels = raw.get("labels") or {}
    modulus = raw.get("modulus")
    if isinstance(source_labels, list):
        source_labels = [str(label) for label in source_labels]
    if isinstance(labels, Mapping):
        labels = {str(k): str(v) for k, v in labels.items()}
    return RelabelRule(
        source_labels=source_labels,
        target_label=_optional_str(_pick(raw, "targetLabel")),
        action=_optional_str(raw.get("action")),
        match=_optional_str(raw.get("match")),
        labels=labels,
        regex=_optional_str(raw.get("regex")),
        separator=_optional_str(raw.get("separator")),
        replacement=_optional_str(raw.get("replacement")),
        modulus=_modulus(modulus) if modulus else None,
        condition=_optional_str(raw.get("if")),
    )


def render_relabel_rule(rule: RelabelRule) -> FieldList:
    """Render a rule with its fields in the fixed document order."""
    fields = FieldList()
    fields.add_if("source_labels", rule.source_labels)
    fields.add_if("target_label", rule.target_label)
    fields.add_if("action", rule.action)
    fields.add_if("match", rule.match)
    # a plain dict renders with sorted keys
    fields.add_if("labels", rule.labels)
    fields.add_if("regex", rule.regex)
    fields.add_if("separator", rule.separator)
    fields.add_if("replacement", rule.replacement)
    fields.add_if("modulus", rule.modulus)
    fields.add_if("if", rule.condition)
    return fields


def render_relabel_rules(raw_rules: list[Mapping[str, Any]]) -> list[FieldList]:
    return [render_relabel_rule(normalize_relabel_rule(raw)) for raw in raw_rules]


def sanitize_label_name(name: str) -> str:
    """Map a Kubernetes label key to the form used in discovery meta labels."""
    return _INVALID_LABEL_CHARS.sub("_", name)


def _stage(action: str, source_label: str, regex: str) -> FieldList:
    return FieldList([
        ("action", action),
        ("source_labels", [source_label]),
        ("regex", regex),
    ])


def selector_to_relabel_stages(selector: LabelSelector, meta_prefix: str) -> list[FieldList]:
    """
    Translate a label selector into keep/drop relabel stages.

    Args:
        selector: Label selector of the scrape resource
        meta_prefix: Discovery meta label prefix, e.g. ``__meta_kubernetes_pod_``

    Returns:
        matchLabels stages in key order, followed by one stage per
        matchExpressions requirement in declaration order.
    """
    stages = []
    for key in sorted(selector.match_labels):
        stages.append(_stage(
            "keep",
            f"{meta_prefix}label_{sanitize_label_name(key)}",
            selector.match_labels[key],
        ))

    for requirement in selector.match_expressions:
        label = sanitize_label_name(requirement.key)
        operator = requirement.operator
        if operator == "Exists":
            stages.append(_stage("keep", f"{meta_prefix}labelpresent_{label}", "true"))
        elif operator == "DoesNotExist":
            stages.append(_stage("drop", f"{meta_prefix}labelpresent_{label}", "true"))
        else:
            action = "drop" if operator == "NotIn" else "keep"
            stages.append(_stage(
                action,
                f"{meta_prefix}label_{label}",
                "|".join(requirement.values),
            ))
    return stages
