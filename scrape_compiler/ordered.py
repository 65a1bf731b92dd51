"""
Ordered document fields and YAML serialization.

The generated scrape configuration must be byte-stable: every stanza is
built as a FieldList whose key order is the order the fields were added.
Plain dicts are only used for label and parameter maps, which have no
natural order and are therefore rendered with sorted keys.
"""

from typing import Any, Iterable, Iterator, Optional

import yaml

STR_TAG = "tag:yaml.org,2002:str"
MAP_TAG = "tag:yaml.org,2002:map"


class FieldList(list):
    """
    An ordered list of (key, value) pairs rendered as a YAML mapping.

    Unlike a dict, the rendered key order never depends on how the pairs
    were collected; it is exactly the order of ``add`` calls.
    """

    def __init__(self, pairs: Optional[Iterable[tuple[str, Any]]] = None):
        super().__init__(pairs or [])

    def add(self, key: str, value: Any) -> "FieldList":
        self.append((key, value))
        return self

    def add_if(self, key: str, value: Any) -> "FieldList":
        """Append the pair unless value is None or an empty string/collection."""
        if value is None:
            return self
        if isinstance(value, (str, list, dict)) and not value:
            return self
        self.append((key, value))
        return self

    def extend_fields(self, other: "FieldList") -> "FieldList":
        self.extend(other)
        return self

    def keys(self) -> list[str]:
        return [key for key, _ in self]

    def get(self, key: str, default: Any = None) -> Any:
        for k, v in self:
            if k == key:
                return v
        return default

    def __contains__(self, key: object) -> bool:
        return any(k == key for k, _ in self)

    def items(self) -> Iterator[tuple[str, Any]]:
        return iter(self)

    def to_dict(self) -> dict[str, Any]:
        """Plain nested dict/list copy, mostly useful in tests."""
        return {key: _plain(value) for key, value in self}


def _plain(value: Any) -> Any:
    if isinstance(value, FieldList):
        return value.to_dict()
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


class DocumentDumper(yaml.SafeDumper):
    """SafeDumper that never emits anchors, since stanzas are freely shared."""

    def ignore_aliases(self, data: Any) -> bool:
        return True


def _represent_field_list(dumper: DocumentDumper, data: FieldList) -> yaml.MappingNode:
    value = []
    node = yaml.MappingNode(MAP_TAG, value, flow_style=False)
    for key, item in data:
        value.append((dumper.represent_data(key), dumper.represent_data(item)))
    return node


def _represent_str(dumper: DocumentDumper, data: str) -> yaml.ScalarNode:
    # Strings that would read back as another type ("8085", "true", "")
    # or that cannot be written plain are double-quoted.
    style = None
    if "\n" in data:
        style = "|"
    elif (dumper.resolve(yaml.ScalarNode, data, (True, False)) != STR_TAG
            or not dumper.analyze_scalar(data).allow_block_plain):
        style = '"'
    return dumper.represent_scalar(STR_TAG, data, style=style)


DocumentDumper.add_representer(FieldList, _represent_field_list)
DocumentDumper.add_representer(str, _represent_str)


def dump_document(value: Any) -> str:
    """Serialize a FieldList (or any plain structure of them) to YAML text."""
    return yaml.dump(
        value,
        Dumper=DocumentDumper,
        default_flow_style=False,
        sort_keys=True,
        allow_unicode=True,
        width=float("inf"),
    )
