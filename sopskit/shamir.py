"""Shamir's Secret Sharing over GF(2^8).

Field arithmetic follows Rijndael's finite field, GF(2)[X] / (X^8 + X^4 + X^3 + X + 1).
Each share carries its x coordinate as its final byte.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Sequence

SHARE_OVERHEAD = 1
"""Bytes added to every share produced by :func:`split` (the x coordinate tag)."""

_MAX_PARTS = 255


def add(a: int, b: int) -> int:
    """Add (or subtract) two elements of GF(2^8)."""
    return a ^ b


def mult(a: int, b: int) -> int:
    """Multiply two elements of GF(2^8) in constant time."""
    accumulator = 0
    for i in range(7, -1, -1):
        bit_of_b = (b >> i) & 1
        a_or_zero = (-bit_of_b & a) & 0xFF
        zero_or_1b = (-(accumulator >> 7) & 0x1B) & 0xFF
        accumulator_times_x = zero_or_1b ^ ((accumulator + accumulator) & 0xFF)
        accumulator = a_or_zero ^ accumulator_times_x
    return accumulator


def inverse(a: int) -> int:
    """Return the multiplicative inverse of ``a`` (a^254); zero maps to zero."""
    b = mult(a, a)  # a^2
    c = mult(a, b)  # a^3
    b = mult(c, c)  # a^6
    b = mult(b, b)  # a^12
    c = mult(b, c)  # a^15
    b = mult(b, b)  # a^24
    b = mult(b, b)  # a^48
    b = mult(b, c)  # a^63
    b = mult(b, b)  # a^126
    b = mult(a, b)  # a^127
    return mult(b, b)  # a^254


def div(a: int, b: int) -> int:
    """Divide ``a`` by ``b`` in GF(2^8)."""
    if b == 0:
        raise ZeroDivisionError("divide by zero")
    return mult(a, inverse(b))


@dataclass(frozen=True)
class Polynomial:
    """A polynomial over GF(2^8); ``coefficients[0]`` is the intercept."""

    coefficients: bytes

    def evaluate(self, x: int) -> int:
        """Evaluate the polynomial at ``x`` using Horner's method."""
        if x == 0:
            return self.coefficients[0]
        out = 0
        for coeff in reversed(self.coefficients):
            out = add(mult(out, x), coeff)
        return out


def make_polynomial(intercept: int, degree: int) -> Polynomial:
    """Build a random polynomial of ``degree`` crossing the y axis at ``intercept``."""
    return Polynomial(bytes([intercept]) + secrets.token_bytes(degree))


def interpolate_polynomial(
    x_samples: Sequence[int], y_samples: Sequence[int], x: int
) -> int:
    """Return the value at ``x`` of the Lagrange polynomial through the samples."""
    result = 0
    for i, (xi, yi) in enumerate(zip(x_samples, y_samples)):
        basis = 1
        for j, xj in enumerate(x_samples):
            if i == j:
                continue
            basis = mult(basis, div(add(x, xj), add(xi, xj)))
        result = add(result, mult(yi, basis))
    return result


def split(secret: bytes, parts: int, threshold: int) -> list[bytes]:
    """Split ``secret`` into ``parts`` shares, any ``threshold`` of which rebuild it."""
    if parts < threshold:
        raise ValueError("parts cannot be less than threshold")
    if parts > _MAX_PARTS:
        raise ValueError("parts cannot exceed 255")
    if threshold < 2:
        raise ValueError("threshold must be at least 2")
    if threshold > _MAX_PARTS:
        raise ValueError("threshold cannot exceed 255")
    if not secret:
        raise ValueError("cannot split an empty secret")

    shares = [bytearray(len(secret) + SHARE_OVERHEAD) for _ in range(parts)]
    for idx, share in enumerate(shares):
        share[-1] = idx + 1

    for idx, value in enumerate(secret):
        polynomial = make_polynomial(value, threshold - 1)
        for x, share in enumerate(shares, start=1):
            share[idx] = polynomial.evaluate(x)

    return [bytes(share) for share in shares]


def combine(parts: Sequence[bytes]) -> bytes:
    """Rebuild a secret from shares produced by :func:`split`."""
    if parts is None or len(parts) < 2:
        raise ValueError("less than two parts cannot be used to reconstruct the secret")

    part_len = len(parts[0])
    if part_len < 2:
        raise ValueError("parts must be at least two bytes")
    if any(len(part) != part_len for part in parts[1:]):
        raise ValueError("all parts must be the same length")

    x_samples = [part[-1] for part in parts]
    if len(set(x_samples)) != len(x_samples):
        raise ValueError("duplicate part detected")

    return bytes(
        interpolate_polynomial(x_samples, [part[idx] for part in parts], 0)
        for idx in range(part_len - 1)
    )