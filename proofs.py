#!/usr/bin/env python3
"""Non-interactive proof that a committed vote selects one valid candidate

For a commitment `C = v*G + r*H` and candidates `0..m-1`, the prover shows
that, for some `i`, `C - v_i*G` is a multiple of `H` (where `v_i` is the vote
scalar of candidate `i`), without revealing which one. This is the classic
disjunction of Schnorr proofs (Cramer-Damgård-Schoenmakers):

    * for every false branch `i`, a transcript `(a_i, c_i, z_i)` is simulated
      from random `c_i` and `z_i`
    * for the true branch, `a = ρ*H` is committed to honestly
    * the Fiat-Shamir challenge `e` hashes the statement and all the `a_i`
    * the true branch gets `c_t = e - Σ_{i≠t} c_i` and answers `z = ρ + c_t*r`

The verifier checks `z_i*H == a_i + c_i*(C - v_i*G)` for every branch and that
the `c_i` add up to `e`. Real and simulated branches are indistinguishable.
"""
import logging

import pedersen
from pedersen import G, H, ORDER
from errors import MalformedVoteStructure, ProofVerificationFailure, VerificationResult

logger = logging.getLogger(__name__)

REAL = 'real'
SIMULATED = 'simulated'


class SigmaProof:
    """One branch of the disjunctive proof

    Attributes:
        candidate_index (int): the candidate the branch is about
        a: first message, a curve point
        c (int): the branch challenge
        z (int): the response
        kind (str): `REAL` or `SIMULATED`; only known to the prover, never
            serialized
    """
    def __init__(self, candidate_index, a, c, z, kind=None):
        self.candidate_index = candidate_index
        self.a = a
        self.c = c
        self.z = z
        self.kind = kind

    def __repr__(self):
        return 'SigmaProof(candidate_index={})'.format(self.candidate_index)

    def to_dict(self):
        return {
            'candidate_index': self.candidate_index,
            'a': pedersen.encode_point(self.a),
            'c': str(self.c),
            'z': str(self.z),
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            int(data['candidate_index']),
            pedersen.decode_point(data['a']),
            int(data['c']),
            int(data['z']),
        )


class ProofBundle:
    """Full proof: one `SigmaProof` per candidate and the aggregate challenge"""
    def __init__(self, proofs, challenge):
        self.proofs = list(proofs)
        self.challenge = challenge

    def __repr__(self):
        return 'ProofBundle(<{} branches>)'.format(len(self.proofs))

    def to_dict(self):
        return {
            'proofs': [proof.to_dict() for proof in self.proofs],
            'challenge': str(self.challenge),
        }

    @classmethod
    def from_dict(cls, data):
        """Parse a serialized proof

        Raises:
            ProofVerificationFailure: if the proof is malformed
        """
        try:
            return cls(
                [SigmaProof.from_dict(proof) for proof in data['proofs']],
                int(data['challenge']),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProofVerificationFailure('malformed proof') from e


def _branch_statement(commitment_point, candidate_index):
    """`C - v_i*G`, which is a multiple of `H` only for the committed vote"""
    v = pedersen.vote_scalar(candidate_index)
    return commitment_point + G * ((ORDER - v) % ORDER)


def compute_challenge(commitment_point, n_candidates, first_messages):
    """Fiat-Shamir challenge binding the statement and every first message"""
    return pedersen.hash_to_scalar(
        'ballot-proof', commitment_point, n_candidates, *first_messages
    )


def _commitment_point(commitment):
    if isinstance(commitment, pedersen.Commitment):
        return commitment.point
    if isinstance(commitment, (str, dict)):
        return pedersen.Commitment.from_dict(commitment).point
    return commitment


def generate_proof(vote, candidates, commitment):
    """Prove that `commitment` opens to the index of one of `candidates`

    Arguments:
        vote (int): index of the chosen candidate
        candidates (list): the candidates of the election; only their count
            matters to the proof
        commitment (pedersen.Commitment): commitment to `vote`, with its
            opening

    Returns:
        ProofBundle: the proof, with the branches in candidate order
    """
    n_candidates = len(candidates)
    if isinstance(vote, bool) or not isinstance(vote, int) or not 0 <= vote < n_candidates:
        raise MalformedVoteStructure(
            'vote must be a candidate index in [0, {})'.format(n_candidates)
        )
    if not commitment.has_opening:
        raise ValueError('the opening of the commitment is required to prove')
    if commitment.vote_scalar != pedersen.vote_scalar(vote):
        raise ValueError('the commitment does not open to the given vote')

    C = commitment.point
    branches = []
    for i in range(n_candidates):
        if i == vote:
            rho = pedersen.random_scalar()
            branches.append(SigmaProof(i, H * rho, None, rho, REAL))
        else:
            c = pedersen.random_scalar()
            z = pedersen.random_scalar()
            # a = z*H - c*(C - v_i*G)
            a = H * z + _branch_statement(C, i) * (ORDER - c)
            branches.append(SigmaProof(i, a, c, z, SIMULATED))

    challenge = compute_challenge(C, n_candidates, [b.a for b in branches])

    real = branches[vote]
    rho = real.z
    real.c = (challenge - sum(b.c for b in branches if b.kind == SIMULATED)) % ORDER
    real.z = (rho + real.c * commitment.randomness_scalar) % ORDER

    logger.debug('generated ballot proof over %d candidates', n_candidates)
    return ProofBundle(branches, challenge)


def check_proof(proof, commitment, candidates):
    """Verify a proof, raising on failure

    Raises:
        ProofVerificationFailure: with the reason of the failure
    """
    if isinstance(proof, dict):
        proof = ProofBundle.from_dict(proof)
    try:
        C = _commitment_point(commitment)
    except ValueError as e:
        raise ProofVerificationFailure('invalid commitment') from e

    n_candidates = len(candidates)
    if len(proof.proofs) != n_candidates:
        raise ProofVerificationFailure('invalid proof count')

    for i, branch in enumerate(proof.proofs):
        if branch.candidate_index != i:
            raise ProofVerificationFailure('invalid sigma proof for candidate {}'.format(i))
        lhs = H * (branch.z % ORDER)
        rhs = branch.a + _branch_statement(C, i) * (branch.c % ORDER)
        if lhs != rhs:
            raise ProofVerificationFailure('invalid sigma proof for candidate {}'.format(i))

    expected = compute_challenge(C, n_candidates, [b.a for b in proof.proofs])
    if expected != proof.challenge % ORDER:
        raise ProofVerificationFailure('invalid challenge')
    if sum(b.c for b in proof.proofs) % ORDER != expected:
        raise ProofVerificationFailure('invalid challenge')


def verify_proof(proof, commitment, candidates):
    """Verify that a proof holds for a commitment and a list of candidates

    Arguments:
        proof (ProofBundle or dict): the proof to check
        commitment: a `pedersen.Commitment`, a curve point, or the
            serialized commitment
        candidates (list): the candidates of the election

    Returns:
        VerificationResult: `is_valid` and, on failure, one of the reasons
        "invalid proof count", "invalid sigma proof for candidate i" or
        "invalid challenge"
    """
    try:
        check_proof(proof, commitment, candidates)
    except ProofVerificationFailure as e:
        logger.info('ballot proof rejected: %s', e.reason)
        return VerificationResult.from_failure(e)
    return VerificationResult(True)
