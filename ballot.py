#!/usr/bin/env python3
"""Casting, checking and tallying ballots

A ballot is an encrypted vote (a candidate index), a Pedersen commitment to
the same vote, a proof that the commitment opens to a valid candidate, and a
nullifier. The encryption randomness feeds the commitment and the nullifier,
and is then discarded.

The tally multiplies the ciphertexts together and threshold-decrypts the
product once: no individual ballot is ever decrypted.
"""
import logging

import paillier
import pedersen
import proofs
import nullifier
from errors import MalformedVoteStructure, VerificationResult

logger = logging.getLogger(__name__)


class Ballot:
    """Public part of a cast vote

    Attributes:
        ciphertext (paillier.PaillierCiphertext): the encrypted vote
        commitment (pedersen.Commitment): commitment to the vote, without its
            opening
        proof (proofs.ProofBundle): proof that the commitment is to a
            candidate index
        nullifier (nullifier.Nullifier): double-vote detection tag
    """
    def __init__(self, ciphertext, commitment, proof, nullifier):
        self.ciphertext = ciphertext
        self.commitment = commitment
        self.proof = proof
        self.nullifier = nullifier

    def __repr__(self):
        return 'Ballot(nullifier={})'.format(self.nullifier.hex)

    def to_dict(self):
        return {
            'ciphertext': str(self.ciphertext.raw_value),
            'commitment': pedersen.encode_point(self.commitment.point),
            'proof': self.proof.to_dict(),
            'nullifier': self.nullifier.to_dict(),
        }

    @classmethod
    def from_dict(cls, data, public_key):
        return cls(
            paillier.PaillierCiphertext.from_ref(public_key, data),
            pedersen.Commitment.from_dict(data['commitment']),
            proofs.ProofBundle.from_dict(data['proof']),
            nullifier.Nullifier.from_dict(data['nullifier']),
        )


def cast_ballot(keys, voter_id, election_id, vote, candidates, store=None):
    """Prepare a ballot, and record it in `store` if given

    Arguments:
        keys (keys.ElectionKeys): the keys of the election
        voter_id: identifier of the voter
        election_id: identifier of the election
        vote (int): index of the chosen candidate
        candidates (list): the candidates of the election
        store (store.InMemoryElectionStore, optional): where to register the
            nullifier and the ciphertext

    Returns:
        Ballot: the public ballot

    Raises:
        MalformedVoteStructure: if `vote` is not a candidate index
        NullifierCollision: if the store already holds the nullifier; nothing
            is recorded in that case
    """
    if isinstance(vote, bool) or not isinstance(vote, int) or not 0 <= vote < len(candidates):
        raise MalformedVoteStructure(
            'vote must be a candidate index in [0, {})'.format(len(candidates))
        )
    encrypted = keys.encrypt(vote)
    commitment = pedersen.generate_commitment(vote, encrypted.randomness)
    proof = proofs.generate_proof(vote, candidates, commitment)
    tag = nullifier.generate_nullifier(voter_id, election_id, encrypted.randomness)
    ballot = Ballot(encrypted.ciphertext, commitment.public(), proof, tag)

    if store is not None:
        store.register_nullifier(election_id, tag.hex)
        store.add_ciphertext(election_id, ballot.ciphertext)
    logger.info('cast ballot in election %s', election_id)
    return ballot


def verify_ballot(ballot, candidates, voter_id=None, election_id=None):
    """Check the proofs carried by a ballot

    When `voter_id` and `election_id` are given, also check that the
    nullifier was derived for this voter in this election.

    Returns:
        VerificationResult
    """
    outcome = proofs.verify_proof(ballot.proof, ballot.commitment, candidates)
    if not outcome:
        return outcome
    if voter_id is not None and election_id is not None:
        if not nullifier.verify_nullifier(ballot.nullifier, voter_id, election_id):
            return VerificationResult(False, 'invalid nullifier')
    elif not nullifier.verify_nullifier_proof(ballot.nullifier):
        return VerificationResult(False, 'invalid nullifier')
    return VerificationResult(True)


def tally_ballots(keys, ballots, k=None):
    """Sum the votes of several ballots

    Arguments:
        keys (keys.ElectionKeys): the keys of the election, with at least `k`
            shares (or the full secret key)
        ballots (list): `Ballot` instances or ciphertext references
        k (int, optional): the number of shares to combine

    Returns:
        int: the sum of the votes
    """
    ciphertexts = [b.ciphertext if isinstance(b, Ballot) else b for b in ballots]
    total = keys.add_encrypted(ciphertexts)
    if keys.threshold is None and keys.secret_key is not None:
        result = keys.decrypt(total)
    else:
        result = keys.threshold_decrypt(total, k)
    logger.info('tallied %d ballots', len(ciphertexts))
    return result
