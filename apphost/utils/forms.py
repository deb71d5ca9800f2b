"""Extended urlencoded form decoding.

Bracketed keys build nested structures:

    user[name]=ana&user[role]=admin  ->  {"user": {"name": "ana", "role": "admin"}}
    tags[]=a&tags[]=b                ->  {"tags": ["a", "b"]}
    color=red&color=blue             ->  {"color": ["red", "blue"]}
    a=1&a[b]=2                       ->  {"a": {"0": "1", "b": "2"}}
"""
import re
from typing import Any
from urllib.parse import parse_qsl

# Nesting below this depth is kept as a literal key remainder.
MAX_DEPTH = 5

_ROOT_KEY = re.compile(r"^([^\[\]]+)((?:\[[^\[\]]*\])*)(.*)$")
_SEGMENT = re.compile(r"\[([^\[\]]*)\]")


def count_parameters(text: str) -> int:
    if not text:
        return 0
    return text.count("&") + 1


def split_key(key: str) -> list[str]:
    """Split `a[b][]` into `["a", "b", ""]`; malformed keys stay literal."""
    match = _ROOT_KEY.match(key)
    if not match:
        return [key]

    root, brackets, rest = match.groups()
    segments = [root]
    for index, segment in enumerate(_SEGMENT.findall(brackets)):
        if index >= MAX_DEPTH:
            segments.append("".join(f"[{s}]" for s in _SEGMENT.findall(brackets)[index:]) + rest)
            return segments
        segments.append(segment)

    if rest:
        if len(segments) == 1:
            return [key]
        segments[-1] = segments[-1] + rest
    return segments


def _set_value(target: dict, key: str, value: Any) -> None:
    if key in target:
        current = target[key]
        if isinstance(current, list):
            current.append(value)
        else:
            target[key] = [current, value]
    else:
        target[key] = value


class _Node:
    """One key of the form tree.

    `values` holds plain and `[]` assignments in arrival order; `children`
    holds keyed assignments. A key that received both renders as an object
    whose values sit under their index ("0", "1", ...) next to the keyed
    children, whichever order the fields arrived in.
    """

    __slots__ = ("values", "children", "is_list")

    def __init__(self):
        self.values: list = []
        self.children: dict[str, _Node] = {}
        self.is_list = False

    def child(self, key: str) -> "_Node":
        node = self.children.get(key)
        if node is None:
            node = self.children[key] = _Node()
        return node

    def render(self) -> Any:
        values = [v.render() if isinstance(v, _Node) else v for v in self.values]
        if not self.children:
            if self.is_list or len(values) > 1:
                return values
            return values[0]

        result: dict = {str(index): value for index, value in enumerate(values)}
        for key, node in self.children.items():
            _set_value(result, key, node.render())
        return result


def _assign(parent: _Node, segments: list[str], value: str) -> None:
    node = parent.child(segments[0])
    if len(segments) == 1:
        node.values.append(value)
        return

    if segments[1] == "":
        node.is_list = True
        if len(segments) == 2:
            node.values.append(value)
        else:
            item = _Node()
            _assign(item, segments[2:], value)
            node.values.append(item)
        return

    _assign(node, segments[1:], value)


def parse_form(text: str, nested: bool = True) -> dict:
    """Decode an urlencoded body.

    Raises:
        UnicodeDecodeError: a percent-encoded sequence is not valid UTF-8
    """
    root = _Node()
    for key, value in parse_qsl(text, keep_blank_values=True, errors="strict"):
        if not key:
            continue
        segments = split_key(key) if nested else [key]
        _assign(root, segments, value)
    return {key: node.render() for key, node in root.children.items()}
