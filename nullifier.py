#!/usr/bin/env python3
"""Nullifiers: detect a second ballot without identifying the voter

The nullifier of a ballot is `N = s*G`, where the scalar `s` hashes the voter
identifier, the election identifier and a digest of the per-vote randomness.
The registry of an election only stores `N`; as long as the voter identifier is
not public, `N` cannot be linked to a voter.

A Schnorr proof of knowledge of `s` goes with the nullifier, bound to the
randomness digest, so that a nullifier cannot be forged from a bare point.

The issue time is recorded but not hashed: the same (voter, election,
randomness) always gives the same nullifier.
"""
import hashlib
import logging
import time

import pedersen
from pedersen import G, ORDER

logger = logging.getLogger(__name__)


def randomness_digest(randomness):
    """One-way digest of the per-vote randomness

    Only this digest is published, never the randomness itself (which would
    let anyone strip the blinding off the encrypted vote).
    """
    if not isinstance(randomness, bytes):
        randomness = str(randomness).encode('utf-8')
    return hashlib.sha256(b'nullifier-randomness:' + randomness).hexdigest()


def nullifier_scalar(voter_id, election_id, digest):
    return pedersen.hash_to_scalar('nullifier', str(voter_id), str(election_id), digest)


def _proof_challenge(value, commitment, digest):
    return pedersen.hash_to_scalar('nullifier-proof', value, commitment, digest)


class NullifierProof:
    """Schnorr proof of knowledge of the nullifier scalar

    Attributes:
        commitment: `A = ρ*G`
        response (int): `z = ρ + e*s`
        randomness_used (str): digest of the randomness the nullifier was
            derived from
    """
    def __init__(self, commitment, response, randomness_used):
        self.commitment = commitment
        self.response = response
        self.randomness_used = randomness_used

    def to_dict(self):
        return {
            'commitment': pedersen.encode_point(self.commitment),
            'response': str(self.response),
            'randomness_used': self.randomness_used,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            pedersen.decode_point(data['commitment']),
            int(data['response']),
            str(data['randomness_used']),
        )


class Nullifier:
    """A nullifier and its proof

    Attributes:
        value: the curve point `N`
        proof (NullifierProof): proof of knowledge of `log_G(N)`
        issued_at (float): creation time, informational only
    """
    def __init__(self, value, proof, issued_at=None):
        self.value = value
        self.proof = proof
        self.issued_at = issued_at

    def __eq__(self, other):
        if not isinstance(other, Nullifier):
            return NotImplemented
        return self.value == other.value

    def __hash__(self):
        return hash(self.hex)

    def __repr__(self):
        return 'Nullifier({})'.format(self.hex)

    @property
    def hex(self):
        """The value of the nullifier, as registered in the store"""
        return pedersen.encode_point(self.value)

    def to_dict(self):
        return {
            'nullifier': self.hex,
            'proof': self.proof.to_dict(),
            'issued_at': self.issued_at,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            pedersen.decode_point(data['nullifier']),
            NullifierProof.from_dict(data['proof']),
            data.get('issued_at'),
        )


def generate_nullifier(voter_id, election_id, randomness, issued_at=None):
    """Derive the nullifier of a ballot

    Arguments:
        voter_id: identifier of the voter
        election_id: identifier of the election
        randomness: the per-vote randomness (int, str or bytes)
        issued_at (float, optional): timestamp to record, defaults to now

    Returns:
        Nullifier: the nullifier with its proof
    """
    digest = randomness_digest(randomness)
    s = nullifier_scalar(voter_id, election_id, digest)
    value = G * s

    rho = pedersen.random_scalar()
    commitment = G * rho
    e = _proof_challenge(value, commitment, digest)
    response = (rho + e * s) % ORDER

    if issued_at is None:
        issued_at = time.time()
    return Nullifier(value, NullifierProof(commitment, response, digest), issued_at)


def _parse(nullifier):
    if isinstance(nullifier, dict):
        return Nullifier.from_dict(nullifier)
    return nullifier


def verify_nullifier_proof(nullifier):
    """Check the proof of knowledge attached to a nullifier

    Returns:
        bool: whether `z*G == A + e*N`
    """
    try:
        nullifier = _parse(nullifier)
    except (KeyError, TypeError, ValueError):
        return False
    proof = nullifier.proof
    e = _proof_challenge(nullifier.value, proof.commitment, proof.randomness_used)
    return G * (proof.response % ORDER) == proof.commitment + nullifier.value * e


def verify_nullifier(nullifier, voter_id, election_id):
    """Check that a nullifier belongs to a voter in an election

    Arguments:
        nullifier (Nullifier or dict): the nullifier to check
        voter_id: identifier of the voter
        election_id: identifier of the election

    Returns:
        bool: whether the nullifier was derived from `voter_id`, `election_id`
        and the randomness its proof was bound to, and its proof holds
    """
    try:
        nullifier = _parse(nullifier)
    except (KeyError, TypeError, ValueError):
        logger.info('malformed nullifier')
        return False
    digest = nullifier.proof.randomness_used
    expected = G * nullifier_scalar(voter_id, election_id, digest)
    if expected != nullifier.value:
        return False
    return verify_nullifier_proof(nullifier)
