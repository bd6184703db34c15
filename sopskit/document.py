"""Encrypting and decrypting a document tree, and computing its MAC."""

from __future__ import annotations

import hashlib
import json
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Iterable, Sequence

from sopskit.tree import Comment, TreeBranch, log

DEFAULT_UNENCRYPTED_SUFFIX = "_unencrypted"
"""Suffix a key must end with for its value to be left unencrypted by default."""

DEFAULT_DECRYPTION_ORDER = ["age", "pgp"]
"""Key types tried first, in this order, when recovering the data key."""

MAC_MISMATCH = "MAC mismatch"
METADATA_NOT_FOUND = "sops metadata not found"

MAC_ONLY_ENCRYPTED_INITIALIZATION = bytes.fromhex(
    "8a3fd2ad54ce66527b1034f3d147be0b0b975b3bf44f72c6fdadec8176f27d69"
)
"""SHA-256 of ``b"sops"``; seeds the MAC when only encrypted values are covered."""

LeafHandler = Callable[[Any, list, list], Any]


class SopsError(Exception):
    """Raised when a document cannot be encrypted, decrypted or verified."""


class Cipher(ABC):
    """Encrypts and decrypts single values with a data key."""

    @abstractmethod
    def encrypt(self, plaintext: Any, key: bytes, additional_data: str) -> str:
        """Encrypt ``plaintext`` with ``key``, authenticating ``additional_data``."""

    @abstractmethod
    def decrypt(self, ciphertext: str, key: bytes, additional_data: str) -> Any:
        """Decrypt ``ciphertext`` with ``key``, authenticating ``additional_data``."""


class MasterKey(ABC):
    """A key that protects the document's data key."""

    @abstractmethod
    def type_to_identifier(self) -> str:
        """Return the identifier of this key's type, such as ``"pgp"``."""


@dataclass
class Metadata:
    """Encryption settings and key information of a document."""

    last_modified: datetime | None = None
    unencrypted_suffix: str = ""
    encrypted_suffix: str = ""
    unencrypted_regex: str = ""
    encrypted_regex: str = ""
    unencrypted_comment_regex: str = ""
    encrypted_comment_regex: str = ""
    message_authentication_code: str = ""
    mac_only_encrypted: bool = False
    version: str = ""
    key_groups: list[list[MasterKey]] = field(default_factory=list)
    shamir_threshold: int = 0
    data_key: bytes | None = None

    def master_key_count(self) -> int:
        """Return the number of master keys across all key groups."""
        return sum(len(group) for group in self.key_groups)


def _matches(pattern: str, text: str) -> bool:
    try:
        return re.search(pattern, text) is not None
    except re.error:
        return False


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _format_time(value: datetime) -> str:
    text = value.strftime("%Y-%m-%dT%H:%M:%S")
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset()
    if offset is None or offset == timedelta(0):
        return text + "Z"
    sign = "+" if offset >= timedelta(0) else "-"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def to_bytes(value: Any) -> bytes:
    """Return the byte form of a leaf value, as covered by the MAC."""
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, bool):
        return b"True" if value else b"False"
    if isinstance(value, int):
        return str(value).encode("ascii")
    if isinstance(value, float):
        return _format_float(value).encode("ascii")
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, datetime):
        return _format_time(value).encode("ascii")
    if isinstance(value, Comment):
        return to_bytes(value.value)
    raise TypeError(f"Could not convert unknown type {type(value).__name__} to bytes")


def _walk_value(value: Any, path: list, stack: list, on_leaf: LeafHandler) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return on_leaf(bytes(value).decode("utf-8", errors="replace"), path, stack)
    if isinstance(value, (str, bool, int, float, datetime, Comment)):
        return on_leaf(value, path, stack)
    if isinstance(value, TreeBranch):
        return _walk_branch(value, path, stack, on_leaf)
    if isinstance(value, list):
        return _walk_list(value, path, stack, on_leaf)
    if value is None:
        return None
    raise TypeError(f"Cannot walk value, unknown type: {type(value).__name__}")


def _walk_list(items: list, path: list, stack: list, on_leaf: LeafHandler) -> list:
    stack = [*stack, []]
    for index, value in enumerate(items):
        is_comment = isinstance(value, Comment)
        if is_comment:
            stack[-1] = [*stack[-1], value.value]
        items[index] = _walk_value(value, path, stack, on_leaf)
        if not is_comment:
            stack[-1] = []
    return items


def _walk_branch(
    branch: TreeBranch, path: list, stack: list, on_leaf: LeafHandler
) -> TreeBranch:
    stack = [*stack, []]
    for item in branch:
        if isinstance(item.key, Comment):
            stack[-1] = [*stack[-1], item.key.value]
            result = _walk_value(item.key, path, stack, on_leaf)
            if isinstance(result, Comment):
                item.key = result
            elif isinstance(result, str):
                item.key = Comment(result)
            else:
                raise TypeError(
                    "walking a Comment should give either a Comment or a string, "
                    f"was {type(result).__name__}"
                )
            continue
        value_is_comment = isinstance(item.value, Comment)
        if value_is_comment:
            stack[-1] = [*stack[-1], item.value.value]
        if not isinstance(item.key, str):
            raise TypeError(
                f"Tree contains a non-string key (type {type(item.key).__name__}): "
                f"{item.key}. Only string keys are supported"
            )
        item.value = _walk_value(item.value, [*path, item.key], stack, on_leaf)
        if not value_is_comment:
            stack[-1] = []
    return branch


@dataclass
class Tree:
    """A document: its data branches and its metadata."""

    branches: list[TreeBranch] = field(default_factory=list)
    metadata: Metadata = field(default_factory=Metadata)
    file_path: str = ""

    def should_be_encrypted(
        self, path: Sequence[str], comments_stack: Sequence[Sequence[str]], is_comment: bool
    ) -> bool:
        """Decide whether the leaf at ``path`` under the active comments gets encrypted."""
        meta = self.metadata
        encrypted = True
        if meta.unencrypted_suffix:
            if any(part.endswith(meta.unencrypted_suffix) for part in path):
                encrypted = False
        if meta.encrypted_suffix:
            encrypted = any(part.endswith(meta.encrypted_suffix) for part in path)
        if meta.unencrypted_regex:
            if any(_matches(meta.unencrypted_regex, part) for part in path):
                encrypted = False
        if meta.encrypted_regex:
            encrypted = any(_matches(meta.encrypted_regex, part) for part in path)
        if meta.unencrypted_comment_regex:
            if any(
                _matches(meta.unencrypted_comment_regex, comment)
                for comments in comments_stack
                for comment in comments
            ):
                encrypted = False
        if meta.encrypted_comment_regex:
            last_level = len(comments_stack) - 1
            last_index = len(comments_stack[-1]) - 1 if comments_stack else -1
            encrypted = False
            for level, comments in enumerate(comments_stack):
                for index, comment in enumerate(comments):
                    # The matching comment line itself stays in clear text.
                    if is_comment and level == last_level and index == last_index:
                        continue
                    if _matches(meta.encrypted_comment_regex, comment):
                        encrypted = True
                        break
                if encrypted:
                    break
        return encrypted

    def _new_digest(self) -> Any:
        digest = hashlib.sha512()
        if self.metadata.mac_only_encrypted:
            digest.update(MAC_ONLY_ENCRYPTED_INITIALIZATION)
        return digest

    def _walk(self, on_leaf: LeafHandler) -> None:
        for branch in self.branches:
            try:
                _walk_branch(branch, [], [], on_leaf)
            except (SopsError, TypeError, ValueError) as err:
                raise SopsError(f"Error walking tree: {err}") from err

    def encrypt(self, key: bytes, cipher: Cipher) -> str:
        """Encrypt the selected values in place and return the MAC as upper-case hex."""
        meta = self.metadata
        digest = self._new_digest()

        def on_leaf(value: Any, path: list, stack: list) -> Any:
            is_comment = isinstance(value, Comment)
            encrypted = self.should_be_encrypted(path, stack, is_comment)
            if (not meta.mac_only_encrypted or encrypted) and not is_comment:
                try:
                    digest.update(to_bytes(value))
                except TypeError as err:
                    raise SopsError(f"Could not convert {value} to bytes: {err}") from err
            if not encrypted:
                return value
            try:
                result = cipher.encrypt(value, key, ":".join(path) + ":")
            except Exception as err:
                raise SopsError(f"Could not encrypt value: {err}") from err
            if (
                is_comment
                and meta.unencrypted_comment_regex
                and _matches(meta.unencrypted_comment_regex, result)
            ):
                raise SopsError(
                    f"Encrypted comment {json.dumps(result, ensure_ascii=False)} matches "
                    "UnencryptedCommentRegex! Make sure that UnencryptedCommentRegex "
                    "cannot match an encrypted comment."
                )
            return result

        self._walk(on_leaf)
        return digest.hexdigest().upper()

    def decrypt(self, key: bytes, cipher: Cipher) -> str:
        """Decrypt the selected values in place and return the MAC as upper-case hex."""
        log.debug("Decrypting tree")
        meta = self.metadata
        digest = self._new_digest()

        def on_leaf(value: Any, path: list, stack: list) -> Any:
            is_comment = isinstance(value, Comment)
            encrypted = self.should_be_encrypted(path, stack, is_comment)
            result = value
            if encrypted:
                additional_data = ":".join(path) + ":"
                if is_comment:
                    try:
                        result = cipher.decrypt(value.value, key, additional_data)
                    except Exception:
                        log.warning(
                            "Found possibly unencrypted comment in file. This is to be "
                            "expected if the file being decrypted was created with an "
                            "older version of SOPS. (comment=%s)",
                            value.value,
                        )
                        result = value
                else:
                    if not isinstance(value, str):
                        raise SopsError(
                            f"Could not decrypt value: expected a string, "
                            f"got {type(value).__name__}"
                        )
                    try:
                        result = cipher.decrypt(value, key, additional_data)
                    except Exception as err:
                        raise SopsError(f"Could not decrypt value: {err}") from err
            if (not meta.mac_only_encrypted or encrypted) and not isinstance(result, Comment):
                try:
                    digest.update(to_bytes(result))
                except TypeError as err:
                    raise SopsError(f"Could not convert {value} to bytes: {err}") from err
            return result

        self._walk(on_leaf)
        return digest.hexdigest().upper()


def sort_key_group_indices(
    group: Sequence[MasterKey], decryption_order: Iterable[str] | None
) -> list[int]:
    """Return the indices of ``group`` ordered by key type as ``decryption_order`` prefers."""
    order = list(decryption_order or [])
    priorities = {identifier: rank for rank, identifier in enumerate(order)}
    lowest = len(order)
    return sorted(
        range(len(group)),
        key=lambda index: priorities.get(group[index].type_to_identifier(), lowest),
    )