#!/usr/bin/env python3
"""In-memory election store

The engine itself is pure: persistence belongs to an external store, which
must make two check-then-insert operations atomic:

    * activating the keys of an election (at most one ACTIVE key set)
    * registering a nullifier (at most once per election)

`InMemoryElectionStore` is the reference implementation of this contract,
used by the casting pipeline and the tests. A database-backed store would
enforce the same with unique constraints.
"""
import logging
import threading

from errors import KeyConflict, NullifierCollision

logger = logging.getLogger(__name__)


class InMemoryElectionStore:
    """Keys, nullifiers and ciphertexts of several elections"""
    def __init__(self):
        self.lock = threading.Lock()
        self._keys = {}
        self._nullifiers = {}
        self._ciphertexts = {}

    def activate_keys(self, election_id, keys):
        """Store the keys of an election in the ACTIVE state

        Arguments:
            election_id: identifier of the election
            keys (keys.ElectionKeys): freshly generated or hydrated keys

        Returns:
            keys.ElectionKeys: the activated keys

        Raises:
            KeyConflict: if the election already has ACTIVE keys
        """
        active = keys.activate()
        with self.lock:
            if election_id in self._keys:
                raise KeyConflict(election_id)
            self._keys[election_id] = active
        logger.info('activated keys for election %s', election_id)
        return active

    def get_keys(self, election_id):
        with self.lock:
            return self._keys.get(election_id)

    def register_nullifier(self, election_id, nullifier):
        """Record a nullifier, atomically rejecting a second use

        Arguments:
            election_id: identifier of the election
            nullifier (str): the encoded nullifier

        Raises:
            NullifierCollision: if the nullifier was already registered for
                this election
        """
        with self.lock:
            used = self._nullifiers.setdefault(election_id, set())
            if nullifier in used:
                logger.warning('nullifier collision in election %s', election_id)
                raise NullifierCollision(election_id, nullifier)
            used.add(nullifier)

    def has_nullifier(self, election_id, nullifier):
        with self.lock:
            return nullifier in self._nullifiers.get(election_id, ())

    def add_ciphertext(self, election_id, ciphertext):
        with self.lock:
            self._ciphertexts.setdefault(election_id, []).append(ciphertext)

    def ciphertexts(self, election_id):
        """Snapshot of the ciphertexts stored for an election"""
        with self.lock:
            return list(self._ciphertexts.get(election_id, ()))
