#!/usr/bin/env python3
"""Re-encryption mixnet

Each round draws a uniformly random permutation, reorders the ciphertexts and
re-randomizes every one of them: the output encrypts the same multiset of
votes, but no output can be linked to an input by comparing ciphertexts.

Each round publishes a `ShuffleProof`, a hash commitment over the inputs, the
outputs, and a salted commitment to the permutation. This is an audit trail,
not a zero-knowledge proof of shuffle: the node keeps a `ShuffleOpening`
(permutation, salt and re-randomization factors) that an auditor can check
with `verify_shuffle_opening()`, at the price of linking that round.
"""
import hashlib
import logging
import os
import random
import struct
import threading

import config
import paillier
from errors import MalformedVoteStructure, ProofVerificationFailure, VerificationResult

logger = logging.getLogger(__name__)

_random = random.SystemRandom()


def _hash_hex(*parts):
    h = hashlib.new(config.HASH_ALGORITHM)
    for part in parts:
        data = part if isinstance(part, bytes) else str(part).encode('utf-8')
        h.update(struct.pack('>I', len(data)))
        h.update(data)
    return h.hexdigest()


def generate_permutation(length):
    """Uniformly random permutation of `range(length)` (Fisher-Yates)"""
    permutation = list(range(length))
    for i in range(length - 1, 0, -1):
        j = _random.randrange(i + 1)
        permutation[i], permutation[j] = permutation[j], permutation[i]
    return permutation


def commit_permutation(permutation, salt):
    return _hash_hex('permutation', salt, *permutation)


def shuffle_commitment(round, node_id, before, after, permutation_commitment):
    """Commitment of a round over its inputs and outputs (raw ciphertexts)"""
    return _hash_hex(
        'shuffle', round, node_id, len(before),
        *[c.raw_value for c in before],
        *[c.raw_value for c in after],
        permutation_commitment,
    )


class ShuffleProof:
    """Public record of a shuffle round

    Attributes:
        round (int): index of the round
        commitment (str): hash over the round, inputs, outputs and
            `permutation_commitment`
        node_id (str): mix node which performed the round
        permutation_commitment (str): salted hash of the permutation
    """
    def __init__(self, round, commitment, node_id, permutation_commitment):
        self.round = round
        self.commitment = commitment
        self.node_id = node_id
        self.permutation_commitment = permutation_commitment

    def __repr__(self):
        return 'ShuffleProof(round={}, node_id={!r})'.format(self.round, self.node_id)

    def to_dict(self):
        return {
            'round': self.round,
            'commitment': self.commitment,
            'node_id': self.node_id,
            'permutation_commitment': self.permutation_commitment,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            int(data['round']), data['commitment'], data['node_id'],
            data['permutation_commitment'],
        )


class ShuffleOpening:
    """Secret side of a shuffle round, kept by the mix node

    `after[i]` is `before[permutation[i]]` re-randomized by `factors[i]`.
    """
    def __init__(self, permutation, salt, factors):
        self.permutation = permutation
        self.salt = salt
        self.factors = factors


class ShuffleResult:
    """Output of `Mixnet.shuffle()`

    Attributes:
        shuffled (list): the ciphertexts output by the last round
        proofs (list): one `ShuffleProof` per round
        stages (list): the ciphertext lists between rounds, `stages[0]` being
            the input and `stages[-1]` the output
        openings (list): one `ShuffleOpening` per round; not to be published
    """
    def __init__(self, shuffled, proofs, stages, openings):
        self.shuffled = shuffled
        self.proofs = proofs
        self.stages = stages
        self.openings = openings

    def to_dict(self):
        return {
            'shuffled': [str(c) for c in self.shuffled],
            'proofs': [proof.to_dict() for proof in self.proofs],
            'rounds': len(self.proofs),
        }


def shuffle_round(ciphertexts, public_key, round=0, node_id=None):
    """Permute and re-randomize a list of ciphertexts

    Arguments:
        ciphertexts (list): ciphertext references under `public_key`
        public_key (paillier.PaillierPublicKey): the election public key
        round (int): index of the round, bound in the proof
        node_id (str, optional): mix node performing the round

    Returns:
        tuple: the output list of `PaillierCiphertext`, the `ShuffleProof`
        and the `ShuffleOpening`
    """
    if node_id is None:
        node_id = 'mix-node-{}'.format(round)
    before = [paillier.PaillierCiphertext.from_ref(public_key, c) for c in ciphertexts]
    permutation = generate_permutation(len(before))

    after = []
    factors = []
    for i in permutation:
        ciphertext, factor = public_key.rerandomize(before[i])
        after.append(ciphertext)
        factors.append(factor)

    salt = os.urandom(16).hex()
    permutation_commitment = commit_permutation(permutation, salt)
    commitment = shuffle_commitment(round, node_id, before, after, permutation_commitment)
    logger.debug('round %d: node %s shuffled %d ciphertexts', round, node_id, len(after))
    return (
        after,
        ShuffleProof(round, commitment, node_id, permutation_commitment),
        ShuffleOpening(permutation, salt, factors),
    )


class Mixnet:
    """A chain of mix nodes shuffling under one public key

    Attributes:
        public_key (paillier.PaillierPublicKey): the election public key
        rounds (int): number of rounds per shuffle
        mix_nodes (list): the registered nodes, as `(node_id, public_key)`;
            round `i` is attributed to node `i mod len(mix_nodes)`
        shuffled_count (int): ciphertexts shuffled so far, across calls

    Shuffles may run from several threads; `lock` guards the node registry
    and the counter.
    """
    def __init__(self, public_key, rounds=config.MIX_ROUNDS, node_ids=None):
        if rounds < 1:
            raise ValueError('a mixnet needs at least one round')
        self.public_key = public_key
        self.rounds = rounds
        self.mix_nodes = []
        self.shuffled_count = 0
        self.lock = threading.Lock()
        for node_id in node_ids or ():
            self.add_mix_node(node_id)

    def add_mix_node(self, node_id, public_key=None):
        """Register a mix node

        Arguments:
            node_id (str): identifier of the node, used to label its proofs
            public_key (optional): the node's own public key, if any
        """
        with self.lock:
            if any(existing == node_id for existing, _ in self.mix_nodes):
                raise ValueError('mix node {!r} already registered'.format(node_id))
            self.mix_nodes.append((node_id, public_key))

    def node_for_round(self, round):
        if not self.mix_nodes:
            return 'mix-node-{}'.format(round)
        return self.mix_nodes[round % len(self.mix_nodes)][0]

    def shuffle(self, ciphertexts, rounds=None):
        """Run the ciphertexts through every round

        Arguments:
            ciphertexts (list): ciphertext references under the public key
            rounds (int, optional): overrides the number of rounds; at least 1

        Returns:
            ShuffleResult: the final ciphertexts and one proof per round
        """
        if rounds is None:
            rounds = self.rounds
        if rounds < 1:
            raise ValueError('a mixnet needs at least one round')
        current = [paillier.PaillierCiphertext.from_ref(self.public_key, c) for c in ciphertexts]
        stages = [current]
        proofs = []
        openings = []
        for round in range(rounds):
            current, proof, opening = shuffle_round(
                current, self.public_key, round, self.node_for_round(round))
            stages.append(current)
            proofs.append(proof)
            openings.append(opening)
        with self.lock:
            self.shuffled_count += len(current)
        logger.info('shuffled %d ciphertexts through %d rounds', len(current), rounds)
        return ShuffleResult(current, proofs, stages, openings)

    def verify_shuffle_proof(self, proof, before, after):
        return verify_shuffle_proof(proof, before, after, self.public_key)

    def statistics(self):
        with self.lock:
            return {
                'total_mix_nodes': len(self.mix_nodes),
                'shuffle_rounds': self.rounds,
                'shuffled_ciphertexts': self.shuffled_count,
            }


def shuffle(ciphertexts, public_key, rounds=config.MIX_ROUNDS):
    """Shuffle through an anonymous mixnet of `rounds` rounds"""
    return Mixnet(public_key, rounds).shuffle(ciphertexts)


def _parse_all(public_key, ciphertexts):
    try:
        return [paillier.PaillierCiphertext.from_ref(public_key, c) for c in ciphertexts]
    except MalformedVoteStructure as e:
        raise ProofVerificationFailure('malformed ciphertext') from e


def check_shuffle_proof(proof, before, after, public_key):
    """Recompute the commitment of a round, raising on mismatch"""
    if isinstance(proof, dict):
        try:
            proof = ShuffleProof.from_dict(proof)
        except (KeyError, TypeError, ValueError) as e:
            raise ProofVerificationFailure('malformed shuffle proof') from e
    if len(before) != len(after):
        raise ProofVerificationFailure('vote count mismatch')
    before = _parse_all(public_key, before)
    after = _parse_all(public_key, after)
    expected = shuffle_commitment(
        proof.round, proof.node_id, before, after, proof.permutation_commitment)
    if expected != proof.commitment:
        raise ProofVerificationFailure('commitment mismatch')
    return proof, before, after


def verify_shuffle_proof(proof, before, after, public_key):
    """Check a round's proof against its inputs and outputs

    This detects any tampering with the published lists after the round, but
    does not prove that `after` re-encrypts a permutation of `before`; see
    `verify_shuffle_opening()`.

    Returns:
        VerificationResult: with reason "vote count mismatch" or
        "commitment mismatch" on failure
    """
    try:
        check_shuffle_proof(proof, before, after, public_key)
    except ProofVerificationFailure as e:
        logger.info('shuffle proof rejected: %s', e.reason)
        return VerificationResult.from_failure(e)
    return VerificationResult(True)


def verify_shuffle_opening(proof, opening, before, after, public_key):
    """Audit a round with the opening kept by its mix node

    Checks the proof, that the opening matches the committed permutation, and
    that every output is the re-randomization of the input it was mapped from.

    Returns:
        VerificationResult
    """
    try:
        proof, before, after = check_shuffle_proof(proof, before, after, public_key)
        permutation = opening.permutation
        if sorted(permutation) != list(range(len(before))) or len(opening.factors) != len(after):
            raise ProofVerificationFailure('invalid permutation')
        if commit_permutation(permutation, opening.salt) != proof.permutation_commitment:
            raise ProofVerificationFailure('permutation commitment mismatch')
        for i, (j, factor) in enumerate(zip(permutation, opening.factors)):
            expected, _ = public_key.rerandomize(before[j], factor)
            if expected != after[i]:
                raise ProofVerificationFailure('re-encryption mismatch at position {}'.format(i))
    except ProofVerificationFailure as e:
        logger.info('shuffle opening rejected: %s', e.reason)
        return VerificationResult.from_failure(e)
    return VerificationResult(True)


def verify_shuffle_chain(result, public_key):
    """Check every round of a `ShuffleResult` against its stages

    Returns:
        VerificationResult: the first failure, if any, with the round index
        prefixed to its reason
    """
    if len(result.stages) != len(result.proofs) + 1:
        return VerificationResult(False, 'stage count mismatch')
    for round, proof in enumerate(result.proofs):
        if proof.round != round:
            return VerificationResult(False, 'round {}: out of order'.format(round))
        outcome = verify_shuffle_proof(
            proof, result.stages[round], result.stages[round + 1], public_key)
        if not outcome:
            return VerificationResult(False, 'round {}: {}'.format(round, outcome.reason))
    if list(result.shuffled) != list(result.stages[-1]):
        return VerificationResult(False, 'output mismatch')
    return VerificationResult(True)
