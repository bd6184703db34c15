"""Encrypted document trees with MACs, Shamir secret sharing, GnuPG-backed PGP master keys and Vault publishing."""

__version__ = "0.1.0"
__all__ = ["document", "log", "pgp", "publish", "shamir", "tree"]