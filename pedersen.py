#!/usr/bin/env python3
"""Pedersen commitments over an elliptic curve group

The group is the prime-order group of points of a short Weierstrass curve
(secp256k1 by default), written additively: `g^v · h^r` is computed as
`v*G + r*H`.

`G` is the standard generator. `H` is derived by hashing a public label onto
the curve (try-and-increment), so that nobody knows `log_G(H)`; this makes the
commitment computationally binding, while it is perfectly hiding.
"""
import hashlib
import struct

import ecdsa
import gmpy2
from ecdsa.ellipticcurve import INFINITY, PointJacobi
from ecdsa.errors import MalformedPointError

import util
import config

_CURVES = {
    'secp256k1': ecdsa.SECP256k1,
    'nist256p': ecdsa.NIST256p,
}

CURVE = _CURVES[config.CURVE_NAME]
ORDER = CURVE.order
G = CURVE.generator


def _derive_generator(label):
    """Hash `label` onto the curve

    Successive counters are hashed into x-coordinates until `x³ + ax + b` is a
    quadratic residue modulo p; since p = 3 mod 4 for the supported curves, the
    square root is `z^((p+1)/4)`.
    """
    curve = CURVE.curve
    p = curve.p()
    a = curve.a() % p
    b = curve.b() % p
    count = 0
    while True:
        digest = hashlib.sha256(
            '{}:{}'.format(label, count).encode('utf-8')
        ).digest()
        x = int.from_bytes(digest, 'big') % p
        z = (gmpy2.powmod(x, 3, p) + a * x + b) % p
        # Euler's criterion
        if z != 0 and gmpy2.powmod(z, (p - 1) // 2, p) == 1:
            y = int(gmpy2.powmod(z, (p + 1) // 4, p))
            point = PointJacobi(curve, x, y, 1, ORDER)
            if point * ORDER == INFINITY:
                return point
        count += 1


H = _derive_generator(config.GENERATOR_H_LABEL)


def random_scalar():
    """Uniformly random non-zero scalar"""
    return util.random_below(ORDER - 1) + 1


def _encode_part(part):
    if isinstance(part, bytes):
        return part
    if isinstance(part, str):
        return part.encode('utf-8')
    if isinstance(part, int):
        return str(part).encode('ascii')
    return point_to_bytes(part)


def hash_to_scalar(*parts):
    """Domain-separated hash of several values into `Z_order`

    Each part (bytes, str, int or curve point) is length-prefixed so that
    distinct tuples never collide by concatenation.
    """
    h = hashlib.new(config.HASH_ALGORITHM)
    for part in parts:
        data = _encode_part(part)
        h.update(struct.pack('>I', len(data)))
        h.update(data)
    return int.from_bytes(h.digest(), 'big') % ORDER


def point_to_bytes(point):
    if point == INFINITY:
        raise ValueError('cannot encode the point at infinity')
    return point.to_bytes('compressed')


def encode_point(point):
    """Compressed SEC1 encoding, as hex"""
    return point_to_bytes(point).hex()


def decode_point(data):
    """Parse a compressed (or uncompressed) SEC1 point from hex

    Raises:
        ValueError: when `data` is not the encoding of a point on the curve
    """
    try:
        return PointJacobi.from_bytes(CURVE.curve, bytes.fromhex(data), order=ORDER)
    except (TypeError, ValueError, MalformedPointError) as e:
        raise ValueError('invalid curve point') from e


def vote_scalar(vote):
    """Map a vote value (candidate index) into the scalar field"""
    return hash_to_scalar('vote', str(vote))


def randomness_scalar(randomness):
    """Map encryption randomness (int, str or bytes) into the scalar field"""
    if not isinstance(randomness, bytes):
        randomness = str(randomness)
    return hash_to_scalar('randomness', randomness)


class Commitment:
    """Pedersen commitment `C = v*G + r*H`

    Attributes:
        point: the commitment, a curve point; this is the only public part
        vote_scalar (int): `v`, the committed value (opening, secret)
        randomness_scalar (int): `r`, the blinding (opening, secret)
    """
    def __init__(self, point, vote_scalar=None, randomness_scalar=None):
        self.point = point
        self.vote_scalar = vote_scalar
        self.randomness_scalar = randomness_scalar

    def __eq__(self, other):
        if not isinstance(other, Commitment):
            return NotImplemented
        return self.point == other.point

    def __hash__(self):
        return hash(encode_point(self.point))

    def __repr__(self):
        return 'Commitment({})'.format(encode_point(self.point))

    @property
    def has_opening(self):
        return self.vote_scalar is not None and self.randomness_scalar is not None

    def public(self):
        """The same commitment without its opening"""
        return Commitment(self.point)

    def to_dict(self, include_opening=False):
        data = {'commitment': encode_point(self.point)}
        if include_opening and self.has_opening:
            data['vote_scalar'] = str(self.vote_scalar)
            data['randomness_scalar'] = str(self.randomness_scalar)
        return data

    @classmethod
    def from_dict(cls, data):
        if isinstance(data, str):
            return cls(decode_point(data))
        vote = data.get('vote_scalar')
        randomness = data.get('randomness_scalar')
        return cls(
            decode_point(data['commitment']),
            int(vote) if vote is not None else None,
            int(randomness) if randomness is not None else None,
        )


def commit(v, r):
    """`v*G + r*H` for scalars `v` and `r`"""
    return G * (v % ORDER) + H * (r % ORDER)


def generate_commitment(vote, randomness):
    """Commit to a vote

    Arguments:
        vote (int): the vote value (candidate index)
        randomness: the per-vote randomness, usually the Paillier blinding
            factor of the encrypted vote

    Returns:
        Commitment: the commitment, with its opening
    """
    v = vote_scalar(vote)
    r = randomness_scalar(randomness)
    return Commitment(commit(v, r), v, r)
