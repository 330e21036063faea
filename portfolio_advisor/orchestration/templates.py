"""Step input templates.

Raw templates are JSON-like values. Parsing turns them into a small tree of
nodes so references are explicit:

* ``"$name"`` becomes ``Reference("name")``;
* ``{"$ref": "name", "path": ["a", 0]}`` is a reference with a nested lookup path;
* ``{"$literal": value}`` yields ``value`` verbatim, including strings that
  start with ``$``;
* mappings and lists are parsed element-wise, anything else is a literal.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Set, Tuple, Union

REF_KEY = "$ref"
PATH_KEY = "path"
LITERAL_KEY = "$literal"


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Reference:
    step: str
    path: Tuple[Union[str, int], ...] = ()


@dataclass(frozen=True)
class MappingNode:
    items: Tuple[Tuple[str, "Node"], ...]


@dataclass(frozen=True)
class SequenceNode:
    items: Tuple["Node", ...]


Node = Union[Literal, Reference, MappingNode, SequenceNode]
_NODE_TYPES = (Literal, Reference, MappingNode, SequenceNode)


def parse_template(raw: Any) -> Node:
    if isinstance(raw, _NODE_TYPES):
        return raw
    if isinstance(raw, str):
        if raw.startswith("$") and len(raw) > 1:
            return Reference(raw[1:])
        return Literal(raw)
    if isinstance(raw, Mapping):
        if LITERAL_KEY in raw and len(raw) == 1:
            return Literal(raw[LITERAL_KEY])
        if REF_KEY in raw and set(raw) <= {REF_KEY, PATH_KEY}:
            return _explicit_reference(raw)
        return MappingNode(tuple((str(key), parse_template(value)) for key, value in raw.items()))
    if isinstance(raw, (list, tuple)):
        return SequenceNode(tuple(parse_template(item) for item in raw))
    return Literal(raw)


def _explicit_reference(raw: Mapping[str, Any]) -> Reference:
    step = raw[REF_KEY]
    if not isinstance(step, str) or not step:
        raise ValueError(f"{REF_KEY} must name a blackboard key, got {step!r}")
    path = raw.get(PATH_KEY) or ()
    if isinstance(path, (str, int)):
        path = (path,)
    if not isinstance(path, (list, tuple)):
        raise ValueError(f"{PATH_KEY} must be a list of keys, got {path!r}")
    return Reference(step, tuple(path))


def _lookup(value: Any, path: Tuple[Union[str, int], ...]) -> Any:
    current = value
    for key in path:
        if isinstance(current, Mapping):
            current = current.get(key)
        elif isinstance(current, (list, tuple)) and isinstance(key, int) and -len(current) <= key < len(current):
            current = current[key]
        else:
            return None
        if current is None:
            return None
    return current


def resolve_template(template: Any, blackboard: Mapping[str, Any]) -> Any:
    """Substitute references with blackboard values.

    A reference to a key the blackboard does not hold resolves to ``None``.
    """

    node = parse_template(template)
    if isinstance(node, Reference):
        return _lookup(blackboard.get(node.step), node.path)
    if isinstance(node, MappingNode):
        return {key: resolve_template(child, blackboard) for key, child in node.items}
    if isinstance(node, SequenceNode):
        return [resolve_template(child, blackboard) for child in node.items]
    return copy.deepcopy(node.value)


def iter_references(template: Any) -> Iterator[Reference]:
    node = parse_template(template)
    if isinstance(node, Reference):
        yield node
    elif isinstance(node, MappingNode):
        for _, child in node.items:
            yield from iter_references(child)
    elif isinstance(node, SequenceNode):
        for child in node.items:
            yield from iter_references(child)


def referenced_keys(template: Any) -> Set[str]:
    return {reference.step for reference in iter_references(template)}
