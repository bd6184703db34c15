# sopskit

A library for encrypted documents whose structure stays readable. Keys stay in
clear text and only values are encrypted. A message authentication code (MAC)
covers keys, values and their order.

## Modules

- `sopskit.shamir` provides Shamir's Secret Sharing over GF(2^8).
  - `split(secret, parts, threshold)` turns a byte string into `parts` shares.
    Each share is one byte longer than the secret, because the share's x
    coordinate is stored as its last byte.
  - `combine(parts)` rebuilds the secret from at least `threshold` shares.
  - The field arithmetic is available as `add`, `mult`, `div` and `inverse`.
    There are also `Polynomial`, `make_polynomial` and `interpolate_polynomial`.
- `sopskit.tree` is the ordered document model: `TreeBranch` (a list of
  `TreeItem`) and `Comment`.
  - Branch methods are `set(path, value)`, `unset(path)`, `truncate(path)` and
    `equals(other)`. `set` returns the branch and whether it changed. `unset`
    raises `SopsKeyNotFound` for a missing key or an out-of-range index.
  - `emit_as_map(branches)` flattens branches into nested dicts and drops
    comments.
- `sopskit.document` provides `Tree`, `Metadata` and the abstract `Cipher` and
  `MasterKey`.
  - `Tree.encrypt(key, cipher)` and `Tree.decrypt(key, cipher)` walk the
    document and change values in place. Both return the MAC as upper-case hex
    SHA-512, and raise `SopsError` on failure.
  - `Tree.should_be_encrypted` decides which values are encrypted. It uses the
    metadata's suffixes (`unencrypted_suffix`, `encrypted_suffix`) and its
    regular expressions on keys (`unencrypted_regex`, `encrypted_regex`) or on
    comments (`unencrypted_comment_regex`, `encrypted_comment_regex`).
  - `to_bytes` gives the byte form of a leaf value that the MAC covers.
  - `sort_key_group_indices(group, decryption_order)` orders master keys by
    type. `DEFAULT_DECRYPTION_ORDER` is `["age", "pgp"]`.
- `sopskit.pgp` provides a PGP `MasterKey` that encrypts and decrypts a data key
  by running `gpg`. Set `SOPS_GPG_EXEC` to use another binary.
  - `GnuPGHome` validates and manages a keyring directory, which must be
    absolute, exist and have mode 0700. It also works as a context manager that
    removes the directory on exit.
  - `new_gnupg_home()` creates a `GnuPGHome` in a temporary location.
  - `new_master_key_from_fingerprint` and `master_keys_from_fingerprint_string`
    build keys from fingerprints.
- `sopskit.publish` provides `Destination` and `VaultDestination`.
  `VaultDestination` writes decrypted data to a Vault KV engine, version 1 or 2,
  over HTTP.
  - The token comes from `VAULT_TOKEN` or `~/.vault-token`.
  - If no address is given, the address comes from `VAULT_ADDR`, falling back
    to `https://127.0.0.1:8200`.
  - Unsupported operations raise `DestinationNotImplementedError`.
- `sopskit.log` provides named loggers that prefix each line with `[NAME]`.
  `new_logger(name)` creates one at warning level, and `set_level(level)`
  adjusts every logger created so far.

## Splitting a secret

```python
from sopskit.shamir import split, combine

shares = split(b"data key", 5, 3)
assert len(shares) == 5
assert combine([shares[0], shares[2], shares[4]]) == b"data key"
```

`split` raises `ValueError` for any of these inputs:

- fewer parts than the threshold;
- more than 255 parts;
- a threshold below 2;
- an empty secret.

`combine` raises `ValueError` for any of these inputs:

- fewer than two parts;
- parts shorter than two bytes;
- parts of unequal length;
- duplicate parts.

## Encrypting a document

```python
from sopskit.document import DEFAULT_UNENCRYPTED_SUFFIX, Cipher, Metadata, Tree, to_bytes
from sopskit.tree import TreeBranch, TreeItem


class ReverseCipher(Cipher):
    def encrypt(self, plaintext, key, additional_data):
        return to_bytes(plaintext).decode()[::-1]

    def decrypt(self, ciphertext, key, additional_data):
        return ciphertext[::-1]


tree = Tree(
    branches=[TreeBranch([
        TreeItem("host_unencrypted", "db.example.com"),
        TreeItem("port", "5432"),
    ])],
    metadata=Metadata(unencrypted_suffix=DEFAULT_UNENCRYPTED_SUFFIX),
)
data_key = bytes(32)
mac = tree.encrypt(data_key, ReverseCipher())
assert tree.branches[0][1].value == "2345"
assert tree.decrypt(data_key, ReverseCipher()) == mac
```

`decrypt` returns the MAC recomputed from the decrypted values. Compare it with
the MAC you stored to detect tampering.

When `Metadata.mac_only_encrypted` is true, the MAC covers only the values that
end up encrypted. It is seeded with a fixed prefix, so it never equals a MAC
computed over the full document.

## Publishing to Vault

```python
from sopskit.publish import VaultDestination

destination = VaultDestination("https://vault.example.com", "apps/web")
print(destination.path("config.yaml"))
# https://vault.example.com/v1/secret/data/apps/web/config.yaml
destination.upload_unencrypted({"port": "5432"}, "config.yaml")
```

`upload_unencrypted` does nothing if the stored secret already holds the same
data.

## What this package does not do

- **No command-line tool.** Everything is used from Python.
- **No file formats.** It does not read or write JSON, YAML or other formats,
  so trees must be built in code.
- **No concrete cipher for values.** You supply a `Cipher` implementation.
- **No data-key retrieval across key groups.** It does not recover data keys
  through key groups or key services.
- **PGP is the only master key type.** It works only through the `gpg` binary,
  with no in-process OpenPGP implementation.
- **Vault is the only publishing destination.** It does not publish to cloud
  object storage.