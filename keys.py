#!/usr/bin/env python3
"""Election key material and threshold decryption

An election owns one Paillier public key, and the secret exponent λ(n) split
into `n` Shamir shares of which any `k` decrypt. `ElectionKeys` is an
immutable context passed explicitly to every operation: hydrating keys for one
election never affects another one.

Keys go through the states UNINITIALIZED → GENERATED → ACTIVE. Once ACTIVE,
they cannot be replaced (see `store.InMemoryElectionStore.activate_keys()`).

With `g = n + 1`, μ = λ⁻¹ mod n; publishing μ next to the shares would thus
reveal λ. Share bundles therefore never carry μ, which is recomputed from the
reconstructed λ.
"""
import enum
import logging

import config
import paillier
import shamir
from errors import InsufficientShares, InvalidKeyMaterial

logger = logging.getLogger(__name__)


class KeyStatus(enum.Enum):
    UNINITIALIZED = 'uninitialized'
    GENERATED = 'generated'
    ACTIVE = 'active'


class ThresholdParams:
    """Number of shares `n` and reconstruction threshold `k`, `1 <= k <= n`"""
    def __init__(self, n, k):
        if not 1 <= k <= n:
            raise InvalidKeyMaterial(
                'threshold must satisfy 1 <= k <= n, got k={} n={}'.format(k, n)
            )
        self.n = n
        self.k = k

    def __eq__(self, other):
        if not isinstance(other, ThresholdParams):
            return NotImplemented
        return (self.n, self.k) == (other.n, other.k)

    def __repr__(self):
        return 'ThresholdParams(n={}, k={})'.format(self.n, self.k)

    def to_dict(self):
        return {'n': self.n, 'k': self.k}


class ElectionKeys:
    """Key material loaded for one election

    Instances are never mutated: the `with_*()` methods and `activate()`
    return new instances.

    Attributes:
        public_key (paillier.PaillierPublicKey): the election public key
        shares (tuple): the `shamir.KeyShare` held by this context
        threshold (ThresholdParams): sharing parameters, `None` if unknown
        secret_key (paillier.PaillierSecretKey): full secret key, only in
            single-authority mode
        status (KeyStatus): lifecycle state
    """
    __slots__ = ('public_key', 'shares', 'threshold', 'secret_key', 'status')

    def __init__(self, public_key=None, shares=(), threshold=None,
                 secret_key=None, status=None):
        if status is None:
            status = KeyStatus.UNINITIALIZED if public_key is None else KeyStatus.GENERATED
        object.__setattr__(self, 'public_key', public_key)
        object.__setattr__(self, 'shares', tuple(shares))
        object.__setattr__(self, 'threshold', threshold)
        object.__setattr__(self, 'secret_key', secret_key)
        object.__setattr__(self, 'status', status)

    def __setattr__(self, name, value):
        raise AttributeError('ElectionKeys is immutable')

    def __repr__(self):
        return 'ElectionKeys(status={}, shares={}, threshold={!r})'.format(
            self.status.name, len(self.shares), self.threshold)

    def _replace(self, **changes):
        fields = {name: getattr(self, name) for name in self.__slots__}
        fields.update(changes)
        return ElectionKeys(**fields)

    def activate(self):
        """Return the same keys in the ACTIVE state"""
        if self.public_key is None:
            raise InvalidKeyMaterial('cannot activate keys without a public key')
        return self._replace(status=KeyStatus.ACTIVE)

    def with_public_key(self, data):
        """Hydrate the public key from stored material (setPublicKey)"""
        return self._replace(public_key=load_public_key(data))

    def with_private_key_shares(self, data):
        """Hydrate the secret side from stored material (setPrivateKeyShares)

        Accepts either the threshold shape (`shares`, `n`, `threshold_n`,
        `threshold_k`) or the single-key shape (`lambda`, `mu`, `n`); see
        `load_private_key_shares()`. The modulus of the material must be the
        one of the loaded public key, if any; otherwise it provides the
        public key.
        """
        shares, threshold, secret_key, bundle_key = load_private_key_shares(data)
        public_key = self.public_key
        if secret_key is not None:
            if public_key is not None and secret_key.public_key != public_key:
                raise InvalidKeyMaterial('private key does not match the public key')
            public_key = secret_key.public_key
        elif bundle_key is not None:
            # shares of λ modulo another n would interpolate a wrong plaintext
            if public_key is not None and bundle_key.n != public_key.n:
                raise InvalidKeyMaterial('private key shares do not match the public key')
            public_key = bundle_key
        return self._replace(
            public_key=public_key,
            shares=shares or self.shares,
            threshold=threshold or self.threshold,
            secret_key=secret_key or self.secret_key,
        )

    def encrypt(self, vote):
        return paillier.encrypt(vote, self._require_public_key())

    def add_encrypted(self, ciphertexts):
        return paillier.add_encrypted(ciphertexts, self._require_public_key())

    def decrypt(self, ciphertext):
        """Decrypt with the full secret key (single-authority mode)"""
        if self.secret_key is None:
            raise InvalidKeyMaterial('private key required for decryption')
        return self.secret_key.decrypt(ciphertext)

    def threshold_decrypt(self, ciphertext, k=None, share_ids=None):
        """Decrypt by reconstructing λ from `k` shares

        Arguments:
            ciphertext: the ciphertext reference to decrypt
            k (int, optional): the number of shares to combine, defaults to
                the threshold of the election
            share_ids (iterable, optional): the ids of the shares to use;
                defaults to the first `k` loaded shares

        Returns:
            int: the plaintext

        When fewer than `k` shares are available but the full secret key is
        loaded, decryption falls back to the secret key. Otherwise,
        `InsufficientShares` is raised.
        """
        public_key = self._require_public_key()
        ciphertext = paillier.PaillierCiphertext.from_ref(public_key, ciphertext)
        if k is None:
            if self.threshold is None:
                raise InvalidKeyMaterial('threshold parameters are not loaded')
            k = self.threshold.k
        elif self.threshold is not None:
            # fewer points than the polynomial degree would interpolate garbage
            k = max(k, self.threshold.k)

        shares = self.shares
        if share_ids is not None:
            wanted = set(share_ids)
            shares = tuple(share for share in shares if share.id in wanted)

        if len(shares) < k:
            if self.secret_key is not None:
                logger.warning(
                    'only %d of %d shares available, using single key decryption',
                    len(shares), k,
                )
                return self.secret_key.decrypt(ciphertext)
            raise InsufficientShares(k, len(shares))

        lambda_ = shamir.reconstruct_secret(shares, public_key.n, threshold=k)
        plaintext = paillier.decrypt_with_lambda(ciphertext, lambda_)
        logger.info('threshold decryption completed with %d shares', k)
        return plaintext

    def verify_tally(self, ciphertexts, expected_sum):
        """Check that the encrypted votes add up to an expected total

        Returns:
            dict: `is_valid`, `calculated_sum`, `expected_sum` and
            `homomorphic_result` (decimal string)
        """
        total = self.add_encrypted(ciphertexts)
        if self.shares and self.threshold is not None:
            calculated = self.threshold_decrypt(total)
        else:
            calculated = self.decrypt(total)
        return {
            'is_valid': calculated == expected_sum,
            'calculated_sum': calculated,
            'expected_sum': expected_sum,
            'homomorphic_result': str(total.raw_value),
        }

    def status_report(self):
        """Summary of which key parts are loaded, without any secret"""
        return {
            'status': self.status.value,
            'has_public_key': self.public_key is not None,
            'has_private_key': self.secret_key is not None,
            'has_private_key_shares': bool(self.shares),
            'share_count': len(self.shares),
            'key_size': self.public_key.n.bit_length() if self.public_key else None,
            'threshold': self.threshold.to_dict() if self.threshold else None,
        }

    def shares_to_dict(self):
        """Share bundle for storage; `mu` is deliberately absent"""
        if not self.shares or self.threshold is None:
            raise InvalidKeyMaterial('no key shares to export')
        pk = self._require_public_key()
        return {
            'shares': [share.to_dict() for share in self.shares],
            'n': str(pk.n),
            'nsquare': str(pk.nsquare),
            'threshold_n': self.threshold.n,
            'threshold_k': self.threshold.k,
        }

    def to_dict(self):
        """Public view of the keys, as returned by `generate_keys`"""
        return {
            'public_key': self._require_public_key().to_dict(),
            'threshold': self.threshold.to_dict() if self.threshold else None,
            'status': self.status.value,
        }

    @classmethod
    def from_dict(cls, data):
        """Inverse of `to_dict()`; shares are loaded separately"""
        data = paillier._load_json(data, 'election keys')
        if 'public_key' not in data:
            raise InvalidKeyMaterial('invalid election keys format')
        threshold = data.get('threshold')
        try:
            if threshold is not None:
                threshold = ThresholdParams(int(threshold['n']), int(threshold['k']))
            status = KeyStatus(data.get('status', KeyStatus.GENERATED.value))
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidKeyMaterial('invalid election keys format') from e
        return cls(load_public_key(data['public_key']), threshold=threshold, status=status)

    def _require_public_key(self):
        if self.public_key is None:
            raise InvalidKeyMaterial('public key required')
        return self.public_key


def generate_keys(bits=config.DEFAULT_KEY_BITS,
                  threshold_n=config.DEFAULT_THRESHOLD_N,
                  threshold_k=config.DEFAULT_THRESHOLD_K,
                  keep_private_key=False):
    """Generate the key material of an election

    Arguments:
        bits (int): size of the Paillier modulus
        threshold_n (int): number of shares of λ
        threshold_k (int): number of shares needed to decrypt
        keep_private_key (bool): whether to retain the full secret key in the
            returned context (single-authority and testing modes only)

    Returns:
        ElectionKeys: in the GENERATED state
    """
    threshold = ThresholdParams(threshold_n, threshold_k)
    pk, sk = paillier.generate_paillier_keypair(bits)
    shares = shamir.split_secret(sk.lambda_, threshold.n, threshold.k, pk.n)
    logger.info('split decryption key into %d shares (threshold %d)', threshold.n, threshold.k)
    return ElectionKeys(
        public_key=pk,
        shares=shares,
        threshold=threshold,
        secret_key=sk if keep_private_key else None,
        status=KeyStatus.GENERATED,
    )


def load_public_key(data):
    """Parse a stored public key (dict or JSON string of decimal strings)"""
    return paillier.PaillierPublicKey.from_dict(data)


def load_private_key_shares(data):
    """Parse stored secret key material

    Two shapes are accepted:

        * threshold: `shares` (list of `{id, value}`), `n` (and optionally
          `nsquare`, alias `nsq`), `threshold_n` (alias `thresholdN`) and
          `threshold_k` (alias `thresholdK`)
        * single key: `lambda`, `mu`, `n`

    Returns:
        tuple: `(shares, threshold, secret_key, public_key)`, where the
        members that do not apply to the given shape are `()` or `None`;
        `public_key` is the key whose modulus the shares belong to
    """
    data = paillier._load_json(data, 'private key shares')
    if 'shares' in data:
        if 'mu' in data:
            logger.warning('ignoring mu stored alongside key shares')
        if 'n' not in data:
            raise InvalidKeyMaterial('private key shares must carry the modulus n')
        public_key = paillier.PaillierPublicKey.from_dict(data)
        try:
            shares = tuple(shamir.KeyShare.from_dict(share) for share in data['shares'])
            threshold_n = int(data.get('threshold_n', data.get('thresholdN', len(shares))))
            threshold_k = int(data['threshold_k'] if 'threshold_k' in data else data['thresholdK'])
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidKeyMaterial('invalid private key shares format') from e
        threshold = ThresholdParams(threshold_n, threshold_k)
        logger.info('loaded %d private key shares', len(shares))
        return shares, threshold, None, public_key
    if 'lambda' in data and 'mu' in data:
        logger.info('loaded single private key')
        secret_key = paillier.PaillierSecretKey.from_dict(data)
        return (), None, secret_key, secret_key.public_key
    raise InvalidKeyMaterial('invalid private key shares format')
