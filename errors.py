"""Exceptions raised by the voting cryptography engine

All of them are recoverable at the request boundary: the caller reports the
failure and leaves persisted state untouched.
"""


class VotingCryptoError(Exception):
    """Base exception for the engine"""


class KeyGenerationFailure(VotingCryptoError):
    """Raised when the prime search exhausted its attempts"""


class InvalidKeyMaterial(VotingCryptoError):
    """Raised when key material is too small, malformed or of the wrong shape"""


class EncryptionRandomnessFailure(VotingCryptoError):
    """Raised when no randomness coprime with `n` was found"""


class InsufficientShares(VotingCryptoError):
    """Raised when fewer than `needed` key shares are available"""

    def __init__(self, needed, available):
        self.needed = needed
        self.available = available
        super().__init__(
            'insufficient shares: need {}, have {} (missing {})'.format(
                needed, available, needed - available)
        )


class MalformedVoteStructure(VotingCryptoError):
    """Raised when a ciphertext reference cannot be parsed"""


class ProofVerificationFailure(VotingCryptoError):
    """Raised when the verification of a cryptographic proof fails"""

    def __init__(self, reason):
        self.reason = reason
        super().__init__(reason)


class NullifierCollision(VotingCryptoError):
    """Raised by the store when a nullifier was already registered"""

    def __init__(self, election_id, nullifier):
        self.election_id = election_id
        self.nullifier = nullifier
        super().__init__(
            'nullifier already used in election {}'.format(election_id)
        )


class KeyConflict(VotingCryptoError):
    """Raised when an election already has ACTIVE keys"""

    def __init__(self, election_id):
        self.election_id = election_id
        super().__init__('keys already exist for election {}'.format(election_id))


class VerificationResult:
    """Outcome of a verification, as reported at the boundary

    Attributes:
        is_valid (bool): whether the verification succeeded
        reason (str): why it failed, `None` on success
    """
    def __init__(self, is_valid, reason=None):
        self.is_valid = is_valid
        self.reason = reason

    @classmethod
    def from_failure(cls, failure):
        return cls(False, failure.reason)

    def __bool__(self):
        return self.is_valid

    def __repr__(self):
        return 'VerificationResult(is_valid={!r}, reason={!r})'.format(
            self.is_valid, self.reason)

    def to_dict(self):
        if self.is_valid:
            return {'is_valid': True}
        return {'is_valid': False, 'reason': self.reason}
