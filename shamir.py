#!/usr/bin/env python3
"""Shamir secret sharing over Z_modulus

The secret is the constant term of a random polynomial of degree `k-1`; share
`x` is the evaluation of this polynomial at `x` (for `x = 1..n`). Any `k`
shares recover the secret by Lagrange interpolation at 0, while `k-1` shares
reveal nothing about it.

In the Paillier threshold setting, the secret is λ(n) and the modulus is `n`
itself; since λ(n) < n, the reconstruction is exact.
"""
import util
from errors import InsufficientShares, InvalidKeyMaterial


class KeyShare:
    """A single point `(id, value)` on the sharing polynomial

    Attributes:
        id (int): the evaluation point, at least 1
        value (int): the polynomial evaluated at `id`, modulo the modulus
    """
    def __init__(self, id, value):
        if id < 1:
            raise InvalidKeyMaterial('share id must be positive, got {}'.format(id))
        self.id = id
        self.value = value

    def __eq__(self, other):
        if not isinstance(other, KeyShare):
            return NotImplemented
        return (self.id, self.value) == (other.id, other.value)

    def __hash__(self):
        return hash((self.id, self.value))

    def __repr__(self):
        # never print the value
        return 'KeyShare(id={})'.format(self.id)

    def to_dict(self):
        return {'id': self.id, 'value': str(self.value)}

    @classmethod
    def from_dict(cls, data):
        try:
            return cls(int(data['id']), int(data['value']))
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidKeyMaterial('malformed key share') from e


def split_secret(secret, n_shares, threshold, modulus):
    """Split a secret into shares

    Arguments:
        secret (int): the value to be shared; it is reduced modulo `modulus`
        n_shares (int): the number of shares to emit
        threshold (int): the number of shares needed to reconstruct the secret
        modulus (int): the modulus of the underlying ring

    Returns:
        list: `n_shares` instances of `KeyShare`, with ids `1..n_shares`
    """
    if not 1 <= threshold <= n_shares:
        raise InvalidKeyMaterial(
            'threshold must satisfy 1 <= k <= n, got k={} n={}'.format(threshold, n_shares)
        )
    coefficients = [secret % modulus] + [
        util.random_below(modulus)
        for _ in range(threshold - 1)
    ]

    shares = []
    for x in range(1, n_shares + 1):
        # Horner's rule, highest degree first
        y = 0
        for coefficient in reversed(coefficients):
            y = (y * x + coefficient) % modulus
        shares.append(KeyShare(x, y))
    return shares


def lagrange_coefficient(i, ids, modulus):
    """Lagrange basis polynomial for `i` over `ids`, evaluated at 0

    Computes `∏_{j≠i} (0 - x_j) / (x_i - x_j) mod modulus`.
    """
    numerator = 1
    denominator = 1
    for j in ids:
        if j == i:
            continue
        numerator = numerator * -j % modulus
        denominator = denominator * (i - j) % modulus
    try:
        return numerator * util.invert(denominator, modulus) % modulus
    except ZeroDivisionError:
        raise InvalidKeyMaterial(
            'share ids are not invertible modulo the key modulus'
        ) from None


def reconstruct_secret(shares, modulus, threshold):
    """Recover the secret by Lagrange interpolation at 0

    Arguments:
        shares (list): the `KeyShare` instances to combine; only the first
            `threshold` of them are used
        modulus (int): the modulus of the underlying ring
        threshold (int): the number of shares required; fewer shares are
            rejected rather than interpolated into a wrong value

    Returns:
        int: the secret, as a non-negative residue modulo `modulus`
    """
    if threshold < 1:
        raise InvalidKeyMaterial('threshold must be positive, got {}'.format(threshold))
    shares = list(shares)
    if len(shares) < threshold:
        raise InsufficientShares(threshold, len(shares))
    shares = shares[:threshold]

    ids = [share.id for share in shares]
    if len(set(ids)) != len(ids):
        raise InvalidKeyMaterial('duplicate share ids: {}'.format(sorted(ids)))

    secret = 0
    for share in shares:
        secret += share.value * lagrange_coefficient(share.id, ids, modulus)
        secret %= modulus
    return secret % modulus
