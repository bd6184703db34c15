"""The ordered key/value tree that holds a document's data."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from sopskit.log import new_logger

log = new_logger("SOPS")


@dataclass(frozen=True)
class Comment:
    """A comment kept in the tree for formats that support comments."""

    value: str


@dataclass
class TreeItem:
    """One key/value entry of a :class:`TreeBranch`."""

    key: Any
    value: Any = None


class SopsKeyNotFound(LookupError):
    """Raised when a path component does not exist in the tree."""

    def __init__(self, msg: str, key: Any) -> None:
        super().__init__(msg % (key,))
        self.msg = msg
        self.key = key

    def __str__(self) -> str:
        return self.msg % (self.key,)


def _is_index(component: Any) -> bool:
    return isinstance(component, int) and not isinstance(component, bool)


def values_equal(one: Any, other: Any) -> bool:
    """Compare two tree values, telling branches, lists and comments apart."""
    if isinstance(one, TreeBranch):
        if not isinstance(other, TreeBranch) or len(one) != len(other):
            return False
        return all(
            values_equal(mine.key, theirs.key) and values_equal(mine.value, theirs.value)
            for mine, theirs in zip(one, other)
        )
    if isinstance(one, list):
        if not isinstance(other, list) or isinstance(other, TreeBranch):
            return False
        if len(one) != len(other):
            return False
        return all(values_equal(a, b) for a, b in zip(one, other))
    if isinstance(one, Comment):
        return isinstance(other, Comment) and one.value == other.value
    return type(one) is type(other) and one == other


def _value_from_path_and_leaf(path: Sequence[Any], leaf: Any) -> Any:
    component = path[0]
    inner = leaf if len(path) == 1 else _value_from_path_and_leaf(path[1:], leaf)
    if _is_index(component):
        return [inner]
    return TreeBranch([TreeItem(key=component, value=inner)])


def _set(node: Any, path: Sequence[Any], value: Any) -> tuple[Any, bool]:
    if isinstance(node, TreeBranch):
        for item in node:
            if item.key == path[0] and type(item.key) is type(path[0]):
                if len(path) == 1:
                    changed = not values_equal(item.value, value)
                    item.value = value
                else:
                    item.value, changed = _set(item.value, path[1:], value)
                return node, changed
        created = _value_from_path_and_leaf(path, value)
        if isinstance(created, TreeBranch) and created:
            node.append(created[0])
        return node, True
    if isinstance(node, list):
        position = path[0]
        if not _is_index(position):
            raise TypeError(f"list position must be an integer, got {type(position).__name__}")
        if len(path) == 1:
            if position >= len(node):
                node.append(value)
                return node, True
            changed = not values_equal(node[position], value)
            node[position] = value
            return node, changed
        if position >= len(node):
            node.append(_value_from_path_and_leaf(path[1:], value))
            return node, True
        node[position], changed = _set(node[position], path[1:], value)
        return node, changed
    created = _value_from_path_and_leaf(path, value)
    return created, not values_equal(node, created)


def _unset(node: Any, path: Sequence[Any]) -> Any:
    if isinstance(node, TreeBranch):
        for index, item in enumerate(node):
            if item.key == path[0] and type(item.key) is type(path[0]):
                if len(path) == 1:
                    del node[index]
                else:
                    item.value = _unset(item.value, path[1:])
                return node
        raise SopsKeyNotFound("Key not found: %s", path[0])
    if isinstance(node, list):
        position = path[0]
        if not _is_index(position):
            raise TypeError(f"list position must be an integer, got {type(position).__name__}")
        if position >= len(node):
            raise SopsKeyNotFound("Index %d out of bounds", position)
        if len(path) == 1:
            del node[position]
        else:
            node[position] = _unset(node[position], path[1:])
        return node
    raise TypeError(f"Unsupported type: {type(node).__name__} for item '{path[0]}'")


class TreeBranch(list):
    """An ordered list of :class:`TreeItem` entries."""

    def __repr__(self) -> str:
        return f"TreeBranch({list.__repr__(self)})"

    def equals(self, other: Any) -> bool:
        """Return whether ``other`` holds the same keys and values in the same order."""
        return values_equal(self, other)

    def set(self, path: Sequence[Any], value: Any) -> tuple[TreeBranch, bool]:
        """Set ``value`` at ``path``, creating missing parts; return the branch and whether it changed."""
        result, changed = _set(self, list(path), value)
        return result, changed

    def unset(self, path: Sequence[Any]) -> TreeBranch:
        """Remove the value at ``path`` and return the branch."""
        return _unset(self, list(path))

    def truncate(self, path: Iterable[Any]) -> Any:
        """Return the value found by following ``path`` down the tree."""
        path = list(path)
        log.info("Truncating tree (path=%s)", path)
        current: Any = self
        for component in path:
            if isinstance(component, str):
                if not isinstance(current, TreeBranch):
                    raise LookupError(f"component ['{component}'] not found")
                for item in current:
                    if item.key == component and isinstance(item.key, str):
                        current = item.value
                        break
                else:
                    raise LookupError(f"component ['{component}'] not found")
            elif _is_index(component):
                if not isinstance(current, (list, tuple)):
                    raise TypeError(
                        f"component [{component}] is integer, but tree part is not a slice"
                    )
                if len(current) <= component:
                    raise LookupError(f"component [{component}] accesses out of bounds")
                current = current[component]
        return current


def emit_as_map(branches: Iterable[TreeBranch]) -> dict[str, Any]:
    """Flatten branches into nested dicts, dropping comments."""
    data: dict[str, Any] = {}
    for branch in branches:
        for item in branch:
            if isinstance(item.key, Comment):
                continue
            value = item.value
            if isinstance(value, TreeBranch):
                value = emit_as_map([value])
            data[item.key] = value
    return data