#!/usr/bin/env python3
import itertools
import json
import threading
import unittest
from unittest import mock

import util
import shamir
import paillier
import keys
import pedersen
import proofs
import nullifier
import mixnet
import ballot
from store import InMemoryElectionStore
from errors import (
    InsufficientShares, InvalidKeyMaterial, KeyConflict, KeyGenerationFailure,
    MalformedVoteStructure, NullifierCollision,
)

_N_BITS = 128
_PRIME = 2**127 - 1


class TestUtil(unittest.TestCase):
    def test_genprime(self):
        for n_bits in (8, 16, 64, 128):
            p = util.genprime(n_bits)
            self.assertEqual(p.bit_length(), n_bits)
            self.assertTrue(util.is_prime(p))
            self.assertEqual(p % 2, 1)

    def test_genprime_failure(self):
        self.assertRaises(KeyGenerationFailure, util.genprime, 4)
        self.assertRaises(KeyGenerationFailure, util.genprime, 1024, attempts=0)

    def test_arithmetic(self):
        self.assertEqual(util.powmod(3, 4, 7), 81 % 7)
        self.assertEqual(util.powmod(3, -1, 7), 5)
        self.assertEqual(util.invert(-2, 7), 3)
        self.assertRaises(ZeroDivisionError, util.invert, 6, 9)
        self.assertEqual(util.lcm(4, 6), 12)
        self.assertEqual(util.prod([]), 1)
        self.assertEqual(util.prod([3, 4, 5], 7), 60 % 7)


class TestShamir(unittest.TestCase):
    def test_any_subset_reconstructs(self):
        secret = 123456789123456789
        for n in range(1, 6):
            for k in range(1, n + 1):
                shares = shamir.split_secret(secret, n, k, _PRIME)
                self.assertEqual([share.id for share in shares], list(range(1, n + 1)))
                for subset in itertools.combinations(shares, k):
                    self.assertEqual(shamir.reconstruct_secret(subset, _PRIME, k), secret)

    def test_insufficient_shares(self):
        shares = shamir.split_secret(42, 5, 3, _PRIME)
        for subset in itertools.combinations(shares, 2):
            with self.assertRaises(InsufficientShares) as cm:
                shamir.reconstruct_secret(subset, _PRIME, 3)
            self.assertEqual(cm.exception.needed, 3)
            self.assertEqual(cm.exception.available, 2)
            self.assertIn('missing 1', str(cm.exception))
        self.assertRaises(InsufficientShares, shamir.reconstruct_secret, [], _PRIME, 1)

        # the threshold cannot be left out
        with self.assertRaises(TypeError):
            shamir.reconstruct_secret(shares[:2], _PRIME)

    def test_invalid_parameters(self):
        self.assertRaises(InvalidKeyMaterial, shamir.split_secret, 1, 3, 4, _PRIME)
        self.assertRaises(InvalidKeyMaterial, shamir.split_secret, 1, 3, 0, _PRIME)
        self.assertRaises(InvalidKeyMaterial, shamir.KeyShare, 0, 1)
        share = shamir.KeyShare(1, 5)
        self.assertRaises(InvalidKeyMaterial, shamir.reconstruct_secret, [share, share], _PRIME, 2)
        self.assertRaises(InvalidKeyMaterial, shamir.reconstruct_secret, [share], _PRIME, 0)

    def test_share_serialization(self):
        share = shamir.KeyShare(3, 2**100)
        self.assertEqual(share.to_dict(), {'id': 3, 'value': str(2**100)})
        self.assertEqual(shamir.KeyShare.from_dict({'id': '3', 'value': str(2**100)}), share)
        self.assertNotIn(str(2**100), repr(share))
        self.assertRaises(InvalidKeyMaterial, shamir.KeyShare.from_dict, {'id': 1})


class PaillierFixture:
    def test_encrypt(self):
        pk, sk = self.keypair

        # check the ciphertexts are actually randomized
        c = pk.encrypt(1)
        d = pk.encrypt(1)
        self.assertNotEqual(c.ciphertext, d.ciphertext)
        self.assertNotEqual(c.randomness, d.randomness)
        self.assertEqual(sk.decrypt(c), 1)
        self.assertEqual(sk.decrypt(d), 1)

        # check the ciphertexts are in ℤ_n²
        self.assertGreater(c.ciphertext.raw_value, 0)
        self.assertLess(c.ciphertext.raw_value, pk.nsquare)
        self.assertGreaterEqual(c.randomness, 2)
        self.assertEqual(util.gcd(c.randomness, pk.n), 1)

    def test_decrypt(self):
        pk, sk = self.keypair
        for m in (0, 1, 12, pk.n - 1):
            self.assertEqual(sk.decrypt(pk.encrypt(m)), m)
            # same, with raw values
            self.assertEqual(sk.decrypt(pk.encrypt(m).ciphertext.raw_value), m)

    def test_additive(self):
        pk, sk = self.keypair
        a = pk.encrypt(42).ciphertext
        b = pk.encrypt(9).ciphertext
        self.assertEqual(sk.decrypt(a + b), 51)
        self.assertEqual(sk.decrypt(a + 9), 51)
        self.assertEqual(sk.decrypt(sum([a, b])), 51)
        self.assertEqual(sk.decrypt(paillier.add_encrypted([a, b], pk)), 51)
        self.assertEqual(sk.decrypt(paillier.add_encrypted([], pk)), 0)

    def test_rerandomize(self):
        pk, sk = self.keypair
        c = pk.encrypt(7).ciphertext
        d, factor = pk.rerandomize(c)
        self.assertNotEqual(c, d)
        self.assertEqual(sk.decrypt(d), 7)
        self.assertEqual(pk.rerandomize(c, factor)[0], d)

    def test_invalid_votes(self):
        pk, sk = self.keypair
        self.assertRaises(MalformedVoteStructure, pk.encrypt, -1)
        self.assertRaises(MalformedVoteStructure, pk.encrypt, pk.n)
        self.assertRaises(MalformedVoteStructure, pk.encrypt, '1')
        self.assertRaises(MalformedVoteStructure, pk.encrypt, True)


class TestPaillier(unittest.TestCase, PaillierFixture):
    @classmethod
    def setUpClass(cls):
        cls.keypair = paillier.generate_paillier_keypair(_N_BITS)

    def test_keygen(self):
        pk, sk = self.keypair
        self.assertEqual(pk.g, pk.n + 1)
        self.assertEqual(pk.nsquare, pk.n**2)
        self.assertGreaterEqual(pk.n.bit_length(), _N_BITS - 1)
        self.assertEqual(sk.mu, util.invert(sk.lambda_, pk.n))

    def test_different_keys(self):
        pk, sk = self.keypair
        pkk, skk = paillier.generate_paillier_keypair(_N_BITS)
        self.assertRaises(ValueError, pk.encrypt(1).ciphertext.__add__, pkk.encrypt(2).ciphertext)
        self.assertRaises(MalformedVoteStructure, sk.decrypt, pkk.encrypt(2).ciphertext)

    def test_corrupted_key(self):
        for n in (2, 15, 77, 100):
            pk = paillier.PaillierPublicKey(n)
            self.assertRaises(InvalidKeyMaterial, pk.encrypt, 0)
            self.assertRaises(InvalidKeyMaterial, paillier.encrypt, 0, pk)

    def test_ciphertext_refs(self):
        pk, sk = self.keypair
        encrypted = pk.encrypt(5)
        raw = encrypted.ciphertext.raw_value
        for ref in (
            encrypted,
            encrypted.ciphertext,
            raw,
            str(raw),
            {'ciphertext': str(raw)},
            {'homomorphic_data': {'ciphertext': raw}},
        ):
            self.assertEqual(sk.decrypt(ref), 5)

    def test_malformed_refs(self):
        pk, sk = self.keypair
        good = pk.encrypt(1)
        for ref in (
            'abc', None, True, 1.5, -1, pk.nsquare, [1],
            {'foo': 1},
            {'homomorphic_data': 'x'},
            {'homomorphic_data': {'nothing': 1}},
        ):
            with self.assertRaises(MalformedVoteStructure):
                paillier.add_encrypted([good, ref], pk)

    def test_serialization(self):
        pk, sk = self.keypair
        data = json.loads(json.dumps(pk.to_dict()))
        self.assertEqual(paillier.PaillierPublicKey.from_dict(data), pk)
        data = {'n': str(pk.n), 'g': str(pk.g), 'nsq': str(pk.nsquare)}
        self.assertEqual(paillier.PaillierPublicKey.from_dict(json.dumps(data)), pk)
        data['nsq'] = str(pk.nsquare + 1)
        self.assertRaises(InvalidKeyMaterial, paillier.PaillierPublicKey.from_dict, data)
        self.assertRaises(InvalidKeyMaterial, paillier.PaillierPublicKey.from_dict, '{')
        self.assertRaises(InvalidKeyMaterial, paillier.PaillierPublicKey.from_dict, {'g': '2'})

        skk = paillier.PaillierSecretKey.from_dict(sk.to_dict())
        self.assertEqual(skk.decrypt(pk.encrypt(3)), 3)


class TestElectionKeys(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.keys = keys.generate_keys(_N_BITS, 5, 3, keep_private_key=True)

    def test_threshold_decrypt(self):
        election_keys = self.keys
        ciphertext = election_keys.encrypt(17)
        self.assertEqual(election_keys.threshold_decrypt(ciphertext), 17)
        for share_ids in itertools.combinations(range(1, 6), 3):
            self.assertEqual(election_keys.threshold_decrypt(ciphertext, share_ids=share_ids), 17)

    def test_insufficient_shares(self):
        election_keys = keys.ElectionKeys(
            self.keys.public_key, self.keys.shares, self.keys.threshold)
        ciphertext = election_keys.encrypt(1)
        with self.assertRaises(InsufficientShares) as cm:
            election_keys.threshold_decrypt(ciphertext, share_ids=[1, 2])
        self.assertEqual(cm.exception.needed, 3)
        self.assertEqual(cm.exception.available, 2)
        # asking for fewer shares than the threshold does not lower it
        with self.assertRaises(InsufficientShares):
            election_keys.threshold_decrypt(ciphertext, k=2, share_ids=[1, 2])

    def test_fallback_to_private_key(self):
        ciphertext = self.keys.encrypt(4)
        with self.assertLogs('keys', 'WARNING'):
            plaintext = self.keys.threshold_decrypt(ciphertext, share_ids=[1])
        self.assertEqual(plaintext, 4)

    def test_lifecycle(self):
        self.assertEqual(keys.ElectionKeys().status, keys.KeyStatus.UNINITIALIZED)
        self.assertEqual(self.keys.status, keys.KeyStatus.GENERATED)
        active = self.keys.activate()
        self.assertEqual(active.status, keys.KeyStatus.ACTIVE)
        self.assertEqual(self.keys.status, keys.KeyStatus.GENERATED)
        self.assertRaises(InvalidKeyMaterial, keys.ElectionKeys().activate)
        with self.assertRaises(AttributeError):
            active.public_key = None

    def test_hydration(self):
        election_keys = keys.ElectionKeys()
        election_keys = election_keys.with_public_key(json.dumps(self.keys.public_key.to_dict()))
        bundle = self.keys.shares_to_dict()
        self.assertNotIn('mu', bundle)
        self.assertNotIn('lambda', bundle)
        election_keys = election_keys.with_private_key_shares(bundle)
        self.assertIsNone(election_keys.secret_key)
        self.assertEqual(election_keys.threshold, keys.ThresholdParams(5, 3))
        self.assertEqual(election_keys.threshold_decrypt(self.keys.encrypt(9)), 9)

    def test_public_view(self):
        data = json.loads(json.dumps(self.keys.activate().to_dict()))
        election_keys = keys.ElectionKeys.from_dict(data)
        self.assertEqual(election_keys.public_key, self.keys.public_key)
        self.assertEqual(election_keys.threshold, self.keys.threshold)
        self.assertEqual(election_keys.status, keys.KeyStatus.ACTIVE)
        self.assertEqual(election_keys.shares, ())
        self.assertRaises(InvalidKeyMaterial, keys.ElectionKeys.from_dict, {'status': 'active'})
        data['status'] = 'deleted'
        self.assertRaises(InvalidKeyMaterial, keys.ElectionKeys.from_dict, data)

    def test_load_private_key_shares(self):
        bundle = self.keys.shares_to_dict()
        legacy = {
            'shares': bundle['shares'],
            'n': bundle['n'],
            'thresholdN': 5,
            'thresholdK': 3,
            'mu': '12345',
        }
        with self.assertLogs('keys', 'WARNING'):
            shares, threshold, secret_key, public_key = keys.load_private_key_shares(
                json.dumps(legacy))
        self.assertEqual(len(shares), 5)
        self.assertEqual(threshold, keys.ThresholdParams(5, 3))
        self.assertIsNone(secret_key)
        self.assertEqual(public_key.n, self.keys.public_key.n)

        shares, threshold, secret_key, public_key = keys.load_private_key_shares(
            self.keys.secret_key.to_dict())
        self.assertEqual(shares, ())
        self.assertIsNone(threshold)
        self.assertEqual(public_key, self.keys.public_key)
        self.assertEqual(secret_key.decrypt(self.keys.encrypt(2)), 2)

        for data in ({}, {'lambda': '1'}, {'shares': [{'id': 1}]}, {'shares': []}, '[]', 'x'):
            self.assertRaises(InvalidKeyMaterial, keys.load_private_key_shares, data)

        # the modulus of the shares is required and must be consistent
        del legacy['n']
        self.assertRaises(InvalidKeyMaterial, keys.load_private_key_shares, legacy)
        legacy['n'] = bundle['n']
        legacy['nsquare'] = str(int(bundle['n']) ** 2 + 1)
        self.assertRaises(InvalidKeyMaterial, keys.load_private_key_shares, legacy)

    def test_mismatched_private_key(self):
        other = keys.generate_keys(_N_BITS, 3, 2, keep_private_key=True)
        election_keys = keys.ElectionKeys(self.keys.public_key)
        self.assertRaises(
            InvalidKeyMaterial,
            election_keys.with_private_key_shares, other.secret_key.to_dict(),
        )

    def test_mismatched_private_key_shares(self):
        other = keys.generate_keys(_N_BITS, 3, 2)
        election_keys = keys.ElectionKeys(self.keys.public_key)
        with self.assertRaisesRegex(InvalidKeyMaterial, 'do not match'):
            election_keys.with_private_key_shares(other.shares_to_dict())
        # the matching bundle is still accepted
        hydrated = election_keys.with_private_key_shares(self.keys.shares_to_dict())
        self.assertEqual(hydrated.threshold_decrypt(self.keys.encrypt(4)), 4)

    def test_hydrate_shares_only(self):
        bundle = json.dumps(self.keys.shares_to_dict())
        election_keys = keys.ElectionKeys().with_private_key_shares(bundle)
        self.assertEqual(election_keys.public_key, self.keys.public_key)
        self.assertEqual(election_keys.status, keys.KeyStatus.UNINITIALIZED)
        self.assertEqual(election_keys.threshold, keys.ThresholdParams(5, 3))
        self.assertEqual(election_keys.threshold_decrypt(self.keys.encrypt(6)), 6)

    def test_verify_tally(self):
        votes = [1, 0, 1, 1]
        ciphertexts = [str(self.keys.encrypt(v).ciphertext) for v in votes]
        report = self.keys.verify_tally(ciphertexts, 3)
        self.assertTrue(report['is_valid'])
        self.assertEqual(report['calculated_sum'], 3)
        self.assertFalse(self.keys.verify_tally(ciphertexts, 2)['is_valid'])

    def test_status_report(self):
        report = self.keys.status_report()
        self.assertEqual(report['status'], 'generated')
        self.assertTrue(report['has_public_key'])
        self.assertTrue(report['has_private_key'])
        self.assertEqual(report['share_count'], 5)
        self.assertEqual(report['threshold'], {'n': 5, 'k': 3})
        self.assertNotIn(str(self.keys.secret_key.lambda_), json.dumps(report))

    def test_invalid_threshold(self):
        self.assertRaises(InvalidKeyMaterial, keys.ThresholdParams, 3, 4)
        self.assertRaises(InvalidKeyMaterial, keys.ThresholdParams, 3, 0)

    def test_round_trip(self):
        election_keys = keys.generate_keys(512, 5, 3)
        self.assertIsNone(election_keys.secret_key)
        ciphertexts = [election_keys.encrypt(v) for v in [0, 1, 0, 1, 1]]
        total = election_keys.add_encrypted(ciphertexts)
        self.assertEqual(election_keys.threshold_decrypt(total, 3), 3)


class TestPedersen(unittest.TestCase):
    def test_generators(self):
        self.assertNotEqual(pedersen.G, pedersen.H)
        self.assertEqual(pedersen.H, pedersen._derive_generator(pedersen.config.GENERATOR_H_LABEL))
        self.assertNotEqual(pedersen.H, pedersen._derive_generator('another label'))

    def test_commitment(self):
        c = pedersen.generate_commitment(1, 12345)
        self.assertEqual(c, pedersen.generate_commitment(1, 12345))
        self.assertNotEqual(c, pedersen.generate_commitment(0, 12345))
        self.assertNotEqual(c, pedersen.generate_commitment(1, 12346))
        self.assertEqual(c.point, pedersen.commit(c.vote_scalar, c.randomness_scalar))

        data = c.to_dict()
        self.assertEqual(set(data), {'commitment'})
        self.assertEqual(pedersen.Commitment.from_dict(data), c)
        self.assertTrue(pedersen.Commitment.from_dict(c.to_dict(include_opening=True)).has_opening)

    def test_point_codec(self):
        encoded = pedersen.encode_point(pedersen.H)
        self.assertEqual(len(encoded), 66)
        self.assertEqual(pedersen.decode_point(encoded), pedersen.H)
        for data in ('', 'zz', '02' + '00' * 31, '05' + encoded[2:]):
            self.assertRaises(ValueError, pedersen.decode_point, data)

    def test_hash_to_scalar(self):
        self.assertNotEqual(pedersen.hash_to_scalar('ab', 'c'), pedersen.hash_to_scalar('a', 'bc'))
        self.assertLess(pedersen.hash_to_scalar(pedersen.G), pedersen.ORDER)


class TestProofs(unittest.TestCase):
    candidates = ['alice', 'bob', 'carol']

    def test_valid_proofs(self):
        for vote in range(len(self.candidates)):
            commitment = pedersen.generate_commitment(vote, 1000 + vote)
            proof = proofs.generate_proof(vote, self.candidates, commitment)
            self.assertEqual(len(proof.proofs), len(self.candidates))
            self.assertEqual(
                [branch.kind == proofs.REAL for branch in proof.proofs],
                [i == vote for i in range(len(self.candidates))],
            )
            result = proofs.verify_proof(proof, commitment.public(), self.candidates)
            self.assertTrue(result.is_valid)
            self.assertEqual(result.to_dict(), {'is_valid': True})

            # serialized form does not reveal the real branch
            data = json.loads(json.dumps(proof.to_dict()))
            for branch in data['proofs']:
                self.assertEqual(set(branch), {'candidate_index', 'a', 'c', 'z'})
            result = proofs.verify_proof(data, commitment.to_dict(), self.candidates)
            self.assertTrue(result)

    def test_wrong_commitment(self):
        commitment = pedersen.generate_commitment(0, 777)
        proof = proofs.generate_proof(0, self.candidates, commitment)
        other = pedersen.generate_commitment(1, 777)
        result = proofs.verify_proof(proof, other, self.candidates)
        self.assertFalse(result)
        self.assertTrue(result.reason.startswith('invalid sigma proof for candidate'))

    def test_vote_outside_candidates(self):
        # a commitment to an index outside the candidates fits no branch
        commitment = pedersen.generate_commitment(5, 42)
        proof = proofs.generate_proof(0, self.candidates, pedersen.generate_commitment(0, 42))
        self.assertFalse(proofs.verify_proof(proof, commitment, self.candidates))
        self.assertRaises(
            MalformedVoteStructure,
            proofs.generate_proof, 5, self.candidates, commitment,
        )

    def test_proof_count(self):
        commitment = pedersen.generate_commitment(1, 42)
        proof = proofs.generate_proof(1, self.candidates, commitment)
        result = proofs.verify_proof(proof, commitment, self.candidates + ['dave'])
        self.assertEqual(result.reason, 'invalid proof count')

    def test_tampered_challenge(self):
        commitment = pedersen.generate_commitment(2, 42)
        proof = proofs.generate_proof(2, self.candidates, commitment)
        proof.challenge += 1
        result = proofs.verify_proof(proof, commitment, self.candidates)
        self.assertEqual(result.reason, 'invalid challenge')

    def test_tampered_branch(self):
        commitment = pedersen.generate_commitment(2, 42)
        proof = proofs.generate_proof(2, self.candidates, commitment)
        proof.proofs[1].z += 1
        result = proofs.verify_proof(proof, commitment, self.candidates)
        self.assertEqual(result.reason, 'invalid sigma proof for candidate 1')

    def test_malformed_proof(self):
        commitment = pedersen.generate_commitment(0, 42)
        result = proofs.verify_proof({'proofs': [{'a': 'zz'}]}, commitment, self.candidates)
        self.assertEqual(result.reason, 'malformed proof')

    def test_missing_opening(self):
        commitment = pedersen.generate_commitment(0, 42).public()
        self.assertRaises(ValueError, proofs.generate_proof, 0, self.candidates, commitment)


class TestNullifier(unittest.TestCase):
    def test_deterministic(self):
        a = nullifier.generate_nullifier('voter', 'election', 1234)
        b = nullifier.generate_nullifier('voter', 'election', 1234)
        self.assertEqual(a.hex, b.hex)
        self.assertEqual(a, b)

    def test_distinct(self):
        base = nullifier.generate_nullifier('voter', 'election', 1234)
        for other in (
            nullifier.generate_nullifier('voter', 'election', 1235),
            nullifier.generate_nullifier('other', 'election', 1234),
            nullifier.generate_nullifier('voter', 'other', 1234),
        ):
            self.assertNotEqual(base.hex, other.hex)

    def test_verify(self):
        randomness = 982451653982451653982451653
        tag = nullifier.generate_nullifier('voter', 'election', randomness)
        self.assertTrue(nullifier.verify_nullifier(tag, 'voter', 'election'))
        self.assertTrue(nullifier.verify_nullifier(tag.to_dict(), 'voter', 'election'))
        self.assertFalse(nullifier.verify_nullifier(tag, 'other', 'election'))
        self.assertFalse(nullifier.verify_nullifier(tag, 'voter', 'other'))
        self.assertTrue(nullifier.verify_nullifier_proof(tag))

        # the randomness itself is never published
        self.assertNotIn(str(randomness), json.dumps(tag.to_dict()))

        tag.proof.response += 1
        self.assertFalse(nullifier.verify_nullifier_proof(tag))
        self.assertFalse(nullifier.verify_nullifier(tag, 'voter', 'election'))
        self.assertFalse(nullifier.verify_nullifier({'nullifier': 'zz'}, 'voter', 'election'))


class TestMixnet(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.pk, cls.sk = paillier.generate_paillier_keypair(_N_BITS)

    def test_permutation(self):
        self.assertEqual(mixnet.generate_permutation(0), [])
        self.assertEqual(mixnet.generate_permutation(1), [0])
        for length in range(2, 10):
            self.assertEqual(sorted(mixnet.generate_permutation(length)), list(range(length)))

    def test_shuffle_preserves_votes(self):
        votes = [0, 1, 1, 2, 0, 3, 1]
        ciphertexts = [self.pk.encrypt(v) for v in votes]
        result = mixnet.shuffle(ciphertexts, self.pk)
        self.assertEqual(len(result.proofs), 3)
        self.assertEqual(sorted(self.sk.decrypt(c) for c in result.shuffled), sorted(votes))
        raw_inputs = {c.ciphertext.raw_value for c in ciphertexts}
        self.assertFalse(raw_inputs & {c.raw_value for c in result.shuffled})
        self.assertTrue(mixnet.verify_shuffle_chain(result, self.pk))

    def test_verify_shuffle_proof(self):
        before = [self.pk.encrypt(v).ciphertext for v in (0, 1, 2)]
        after, proof, opening = mixnet.shuffle_round(before, self.pk, 0, 'node-a')
        self.assertTrue(mixnet.verify_shuffle_proof(proof, before, after, self.pk))
        self.assertTrue(mixnet.verify_shuffle_proof(proof.to_dict(), before, after, self.pk))
        self.assertTrue(mixnet.verify_shuffle_opening(proof, opening, before, after, self.pk))

        result = mixnet.verify_shuffle_proof(proof, before, after[:2], self.pk)
        self.assertEqual(result.reason, 'vote count mismatch')

        tampered = [after[0], after[1], self.pk.encrypt(1).ciphertext]
        result = mixnet.verify_shuffle_proof(proof, before, tampered, self.pk)
        self.assertEqual(result.reason, 'commitment mismatch')

        wrong = mixnet.ShuffleOpening(opening.permutation, opening.salt, opening.factors[::-1])
        result = mixnet.verify_shuffle_opening(proof, wrong, before, after, self.pk)
        self.assertFalse(result)
        self.assertTrue(result.reason.startswith('re-encryption mismatch'))

    def test_tampered_chain(self):
        ciphertexts = [self.pk.encrypt(v) for v in (0, 1, 1)]
        result = mixnet.shuffle(ciphertexts, self.pk, rounds=2)
        result.stages[1] = result.stages[1][::-1]
        outcome = mixnet.verify_shuffle_chain(result, self.pk)
        self.assertEqual(outcome.reason, 'round 0: commitment mismatch')

    def test_mix_nodes(self):
        mix = mixnet.Mixnet(self.pk, rounds=3, node_ids=['a', 'b'])
        self.assertRaises(ValueError, mix.add_mix_node, 'a')
        result = mix.shuffle([self.pk.encrypt(1)])
        self.assertEqual([proof.node_id for proof in result.proofs], ['a', 'b', 'a'])
        self.assertEqual(mix.statistics(), {
            'total_mix_nodes': 2,
            'shuffle_rounds': 3,
            'shuffled_ciphertexts': 1,
        })
        self.assertRaises(ValueError, mixnet.Mixnet, self.pk, 0)
        self.assertRaises(ValueError, mix.shuffle, [self.pk.encrypt(1)], rounds=0)
        self.assertEqual(mix.statistics()['shuffled_ciphertexts'], 1)

    def test_concurrent_shuffles(self):
        mix = mixnet.Mixnet(self.pk, rounds=1)
        ciphertexts = [self.pk.encrypt(v) for v in (0, 1, 1)]
        threads = [threading.Thread(target=mix.shuffle, args=(ciphertexts,)) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(mix.statistics()['shuffled_ciphertexts'], 24)


class TestStore(unittest.TestCase):
    def test_key_conflict(self):
        store = InMemoryElectionStore()
        election_keys = keys.generate_keys(_N_BITS, 3, 2)
        active = store.activate_keys('e1', election_keys)
        self.assertEqual(active.status, keys.KeyStatus.ACTIVE)
        self.assertIs(store.get_keys('e1'), active)
        with self.assertRaises(KeyConflict):
            store.activate_keys('e1', keys.generate_keys(_N_BITS, 3, 2))
        self.assertIs(store.get_keys('e1'), active)
        store.activate_keys('e2', election_keys)

    def test_nullifier_collision(self):
        store = InMemoryElectionStore()
        store.register_nullifier('e1', 'abc')
        self.assertTrue(store.has_nullifier('e1', 'abc'))
        self.assertFalse(store.has_nullifier('e2', 'abc'))
        with self.assertRaises(NullifierCollision) as cm:
            store.register_nullifier('e1', 'abc')
        self.assertEqual(cm.exception.nullifier, 'abc')
        store.register_nullifier('e2', 'abc')

    def race(self, target, expected_error, n_threads=16):
        barrier = threading.Barrier(n_threads)
        outcomes = []
        outcomes_lock = threading.Lock()

        def run():
            barrier.wait()
            try:
                target()
            except expected_error:
                outcome = False
            else:
                outcome = True
            with outcomes_lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=run) for _ in range(n_threads)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return outcomes

    def test_concurrent_nullifiers(self):
        store = InMemoryElectionStore()
        outcomes = self.race(lambda: store.register_nullifier('e1', 'abc'), NullifierCollision)
        self.assertEqual(len(outcomes), 16)
        self.assertEqual(outcomes.count(True), 1)
        self.assertTrue(store.has_nullifier('e1', 'abc'))

    def test_concurrent_activation(self):
        store = InMemoryElectionStore()
        election_keys = keys.generate_keys(_N_BITS, 3, 2)
        outcomes = self.race(lambda: store.activate_keys('e1', election_keys), KeyConflict)
        self.assertEqual(len(outcomes), 16)
        self.assertEqual(outcomes.count(True), 1)
        self.assertEqual(store.get_keys('e1').status, keys.KeyStatus.ACTIVE)


class TestBallot(unittest.TestCase):
    candidates = ['yes', 'no']

    @classmethod
    def setUpClass(cls):
        cls.store = InMemoryElectionStore()
        cls.keys = cls.store.activate_keys('election', keys.generate_keys(512, 5, 3))

    def test_election(self):
        votes = [0, 1, 0, 1, 1]
        ballots = [
            ballot.cast_ballot(self.keys, 'voter-{}'.format(i), 'election', vote,
                               self.candidates, self.store)
            for i, vote in enumerate(votes)
        ]
        for i, b in enumerate(ballots):
            self.assertTrue(ballot.verify_ballot(b, self.candidates))
            self.assertTrue(ballot.verify_ballot(b, self.candidates, 'voter-{}'.format(i), 'election'))
            self.assertTrue(self.store.has_nullifier('election', b.nullifier.hex))
        outcome = ballot.verify_ballot(ballots[0], self.candidates, 'voter-1', 'election')
        self.assertEqual(outcome.reason, 'invalid nullifier')

        self.assertEqual(ballot.tally_ballots(self.keys, ballots), 3)
        shuffled = mixnet.shuffle(self.store.ciphertexts('election'), self.keys.public_key)
        self.assertEqual(ballot.tally_ballots(self.keys, shuffled.shuffled), 3)

    def test_serialization(self):
        b = ballot.cast_ballot(self.keys, 'voter', 'other-election', 1, self.candidates)
        data = json.loads(json.dumps(b.to_dict()))
        parsed = ballot.Ballot.from_dict(data, self.keys.public_key)
        self.assertTrue(ballot.verify_ballot(parsed, self.candidates, 'voter', 'other-election'))

    def test_invalid_vote(self):
        with self.assertRaises(MalformedVoteStructure):
            ballot.cast_ballot(self.keys, 'voter', 'election', 2, self.candidates, self.store)
        self.assertEqual(self.store.ciphertexts('unknown'), [])

    def test_replayed_nullifier(self):
        first = ballot.cast_ballot(self.keys, 'voter', 'replay', 1, self.candidates, self.store)
        self.assertEqual(len(self.store.ciphertexts('replay')), 1)
        with mock.patch.object(ballot.nullifier, 'generate_nullifier',
                               return_value=first.nullifier):
            with self.assertRaises(NullifierCollision):
                ballot.cast_ballot(self.keys, 'voter', 'replay', 0, self.candidates, self.store)
        # the rejected ballot left no ciphertext behind
        self.assertEqual(self.store.ciphertexts('replay'), [first.ciphertext])


if __name__ == '__main__':
    unittest.main()
