#!/usr/bin/env python3
"""Implementation of the Paillier cryptosystem

The Paillier cryptosystem is a public key encryption system with the property
of being partially homomorphic for addition (i.e. we can combine the
ciphertexts of two messages to obtain a ciphertext of the sum of these two
messages). Ballots are encrypted under a single election public key and
summed without ever being decrypted individually.

The main entry points of this module are `generate_paillier_keypair()`,
`encrypt()`, `add_encrypted()` and `decrypt()`. Splitting the secret key into
shares lives in the `keys` module.
"""
import json
import logging

import util
import config
from errors import (
    EncryptionRandomnessFailure, InvalidKeyMaterial, MalformedVoteStructure,
)

logger = logging.getLogger(__name__)


def generate_paillier_keypair(n_bits=config.DEFAULT_KEY_BITS,
                              attempts=config.PRIME_ATTEMPTS):
    """Generate a pair of keys for the Paillier cryptosystem

    Arguments:
        n_bits (int, optional): the number of bits for the parameter n; the
            security corresponds to the difficulty of factoring `n` (as in
            RSA); as of 2018, NIST and ANSSI recommend at least 2048 bits and
            NSA 3072 bits
        attempts (int, optional): bound on the number of prime candidates
            drawn for each of `p` and `q`

    Returns:
        tuple: pair of two elements, usually named respectively `pk`
            (`PaillierPublicKey`), and `sk` (`PaillierSecretKey`)

        The public key (`pk`) allows to encrypt messages (non-negative
        integers); the secret key (`sk`) allows to decrypt ciphertexts
        generated using that public key (but not using another).
    """
    p = util.genprime(n_bits // 2, attempts)
    q = util.genprime(n_bits // 2, attempts)
    while p == q:
        q = util.genprime(n_bits // 2, attempts)
    sk = PaillierSecretKey.from_primes(p, q)
    logger.info('generated %d-bit Paillier keypair', sk.public_key.n.bit_length())
    return sk.public_key, sk


def L(u, n):
    """As defined in the Paillier cryptosystem

    Used for decryption operations.

    Arguments:
        u (int): ciphertext (or g) to a secret exponent
        n (int): modulus currently in use
    """
    return (u - 1) // n


def _parse_int(value, what):
    if isinstance(value, bool):
        raise InvalidKeyMaterial('{} must be an integer'.format(what))
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise InvalidKeyMaterial('{} must be a decimal integer'.format(what)) from e


def _load_json(data, what):
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except ValueError as e:
            raise InvalidKeyMaterial('invalid {} format'.format(what)) from e
    if not isinstance(data, dict):
        raise InvalidKeyMaterial('invalid {} format'.format(what))
    return data


class PaillierPublicKey:
    """Public key for the Paillier cryptosystem

    Attributes:
        n (int): parameter `n` from the Paillier cryptosystem, should be the
            product of two large primes of the same size
        g (int): parameter `g` from the Paillier cryptsystem; in
            `generate_paillier_keypair()`, `g` is set to `1 + n`
        nsquare (int): cached value of `n × n`, the modulus of ciphertexts
    """

    def __init__(self, n, g=None):
        """Constructor

        Arguments:
            n (int): parameter from the Paillier cryptosystem
            g (int, optional): parameter from the Paillier cryptosystem,
                defaults to `n + 1`
        """
        self.n = n
        self.nsquare = n * n
        self.g = n + 1 if g is None else g

    def __eq__(self, other):
        if not isinstance(other, PaillierPublicKey):
            return NotImplemented
        return self.n == other.n and self.g == other.g

    def __hash__(self):
        return hash((self.n, self.g))

    def __repr__(self):
        return 'PaillierPublicKey(<{} bits>)'.format(self.n.bit_length())

    def check(self):
        """Reject moduli too small to be anything but corrupted key material"""
        if self.n <= 2 or self.n <= config.MIN_MODULUS:
            raise InvalidKeyMaterial(
                'public key n is too small ({}); keys may be corrupted'.format(self.n)
            )

    def random_coprime(self, attempts=config.ENCRYPTION_ATTEMPTS):
        """Draw a blinding factor `r` from `[2, n-1]` with `gcd(r, n) = 1`

        Enough random bytes to cover `n` are reduced modulo `n - 2` and shifted
        by 2, then resampled when not coprime with `n`.

        Arguments:
            attempts (int): bound on the number of draws

        Returns:
            int: the blinding factor
        """
        self.check()
        n_bytes = (self.n.bit_length() + 7) // 8
        for _ in range(attempts):
            r = util.random_bytes_int(n_bytes) % (self.n - 2) + 2
            if util.gcd(r, self.n) == 1:
                return r
        raise EncryptionRandomnessFailure(
            'could not find coprime random number in {} attempts'.format(attempts)
        )

    def raw_encrypt(self, m, randomization=None):
        """Encrypt a plaintext into a raw ciphertext

        Arguments:
            m (int): the plaintext, in `[0, n)`
            randomization (int, optional): the blinding factor; if not
                provided, a secure-random value is chosen

        Returns:
            tuple: a pair of integers, the raw ciphertext `g^m r^n mod n²` and
            the blinding factor `r` that was used
        """
        self.check()
        if isinstance(m, bool) or not isinstance(m, int) or not 0 <= m < self.n:
            raise MalformedVoteStructure('vote must be an integer in [0, n)')
        n2 = self.nsquare

        # if g is of the form 1+n, then we can avoid the exponentiation
        if self.g == self.n + 1:
            gm = (1 + self.n * m) % n2
        else:
            gm = util.powmod(self.g, m, n2)

        if randomization is None:
            randomization = self.random_coprime()
        raw_value = gm * util.powmod(randomization, self.n, n2) % n2
        return raw_value, randomization

    def encrypt(self, m):
        """Encrypt a vote

        Arguments:
            m (int): the vote (usually a candidate index) to be encrypted

        Returns:
            EncryptedVote: the ciphertext and the randomness used; the caller
                keeps the randomness for the commitment and must not publish it
                next to the ciphertext
        """
        raw_value, randomness = self.raw_encrypt(m)
        return EncryptedVote(PaillierCiphertext(self, raw_value), randomness)

    def rerandomize(self, ciphertext, randomization=None):
        """Refresh the randomness of a ciphertext

        The result encrypts the same plaintext but cannot be linked to the
        input by comparison.

        Arguments:
            ciphertext (PaillierCiphertext): the ciphertext to refresh
            randomization (int, optional): the blinding factor; if not
                provided, a secure-random value is chosen

        Returns:
            tuple: the new `PaillierCiphertext` and the blinding factor used
        """
        ciphertext = PaillierCiphertext.from_ref(self, ciphertext)
        if randomization is None:
            randomization = self.random_coprime()
        raw_value = ciphertext.raw_value * util.powmod(randomization, self.n, self.nsquare) % self.nsquare
        return PaillierCiphertext(self, raw_value), randomization

    def to_dict(self):
        return {'n': str(self.n), 'g': str(self.g), 'nsquare': str(self.nsquare)}

    @classmethod
    def from_dict(cls, data):
        """Load a public key from decimal strings

        Arguments:
            data (dict or str): a dict (or its JSON encoding) with fields `n`,
                `g` and optionally `nsquare` (alias `nsq`)

        Returns:
            PaillierPublicKey: the key
        """
        data = _load_json(data, 'public key')
        if 'n' not in data:
            raise InvalidKeyMaterial('invalid public key format')
        n = _parse_int(data['n'], 'n')
        g = _parse_int(data['g'], 'g') if 'g' in data else None
        pk = cls(n, g)
        nsquare = data.get('nsquare', data.get('nsq'))
        if nsquare is not None and _parse_int(nsquare, 'nsquare') != pk.nsquare:
            raise InvalidKeyMaterial('nsquare does not match n')
        return pk


class PaillierSecretKey:
    """Secret key for the Paillier cryptsystem

    Only materialized in single-authority mode (and in tests); in threshold
    mode only shares of `lambda_` exist.

    Attributes:
        lambda_ (int): λ(n) = lcm(p-1, q-1)
        mu (int): `L(g^λ mod n²)^-1 mod n`
        public_key (PaillierPublicKey): the corresponding public key
    """
    def __init__(self, lambda_, mu, public_key):
        """Constructor

        Arguments:
            lambda_ (int): parameter from the Paillier cryptosystem
            mu (int): parameter from the Paillier cryptosystem
            public_key (PaillierPublicKey): the corresponding public key
        """
        self.lambda_ = lambda_
        self.mu = mu
        self.public_key = public_key

    def __repr__(self):
        return 'PaillierSecretKey(<{} bits>)'.format(self.public_key.n.bit_length())

    @classmethod
    def from_primes(cls, p, q):
        """Derive the secret key from the factorization of `n`"""
        pk = PaillierPublicKey(p * q)
        lambda_ = util.lcm(p - 1, q - 1)
        return cls(lambda_, compute_mu(pk, lambda_), pk)

    def decrypt(self, ciphertext):
        """Decrypt a ciphertext

        Arguments:
            ciphertext (PaillierCiphertext or CiphertextRef): the ciphertext to
                be decrypted

        Returns:
            int: the message represented in the ciphertext, in `[0, n)`

            If homomorphic additions have been performed, then the sum of the
            original messages is returned.
        """
        ciphertext = PaillierCiphertext.from_ref(self.public_key, ciphertext)
        return decrypt_with_lambda(ciphertext, self.lambda_, self.mu)

    def to_dict(self):
        pk = self.public_key
        return {
            'lambda': str(self.lambda_),
            'mu': str(self.mu),
            'n': str(pk.n),
            'nsquare': str(pk.nsquare),
        }

    @classmethod
    def from_dict(cls, data):
        data = _load_json(data, 'private key')
        try:
            lambda_ = _parse_int(data['lambda'], 'lambda')
            mu = _parse_int(data['mu'], 'mu')
            pk = PaillierPublicKey.from_dict(data)
        except KeyError as e:
            raise InvalidKeyMaterial('invalid private key format') from e
        return cls(lambda_, mu, pk)


def compute_mu(public_key, lambda_):
    """`L(g^λ mod n²)^-1 mod n`"""
    pk = public_key
    try:
        return util.invert(L(util.powmod(pk.g, lambda_, pk.nsquare), pk.n), pk.n)
    except ZeroDivisionError:
        raise InvalidKeyMaterial('lambda does not match the public key') from None


def decrypt_with_lambda(ciphertext, lambda_, mu=None):
    """Decrypt with the secret exponent `λ`

    Arguments:
        ciphertext (PaillierCiphertext): the ciphertext to be decrypted
        lambda_ (int): λ(n), possibly just reconstructed from shares
        mu (int, optional): the matching μ; computed from `lambda_` if absent

    Returns:
        int: `L(c^λ mod n²) × μ mod n`
    """
    pk = ciphertext.public_key
    if mu is None:
        mu = compute_mu(pk, lambda_)
    c_lambda = util.powmod(ciphertext.raw_value, lambda_, pk.nsquare)
    return L(c_lambda, pk.n) * mu % pk.n


class PaillierCiphertext:
    """Ciphertext from the Paillier cryptosystem

    Attributes:
        public_key (PaillierPublicKey): the Paillier public key used to
            generate this ciphertext
        raw_value (int): an element of Z_n², that should equals to `g^m r^n`
            where `n` and `g` are the attributes of the public key, `m` is the
            message which was encrypted and `r` is a random element of Z_n
    """
    def __init__(self, public_key, raw_value):
        """Constructor

        Arguments:
            public_key (PaillierPublicKey): the Paillier public key
            raw_value (int): the actual ciphertext as an element of Z_n²
        """
        self.public_key = public_key
        self.raw_value = raw_value

    @classmethod
    def from_ref(cls, public_key, ref):
        """Normalize a ciphertext reference into a ciphertext

        This is the single point where the shapes accepted at the boundary are
        converted:

            * a `PaillierCiphertext` (or `EncryptedVote`) under `public_key`
            * an integer, or its decimal string
            * `{'ciphertext': ...}`
            * `{'homomorphic_data': {'ciphertext': ...}}`

        Arguments:
            public_key (PaillierPublicKey): the key the ciphertext belongs to
            ref: the ciphertext reference

        Returns:
            PaillierCiphertext: the parsed ciphertext, in `[0, n²)`
        """
        if isinstance(ref, EncryptedVote):
            ref = ref.ciphertext
        if isinstance(ref, PaillierCiphertext):
            if ref.public_key != public_key:
                raise MalformedVoteStructure('ciphertext is under a different public key')
            return ref

        value = ref
        if isinstance(value, dict):
            if 'ciphertext' in value:
                value = value['ciphertext']
            elif isinstance(value.get('homomorphic_data'), dict):
                value = value['homomorphic_data'].get('ciphertext')
            else:
                value = None
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            raise MalformedVoteStructure('invalid vote structure for homomorphic addition')
        try:
            raw_value = int(value)
        except ValueError:
            raise MalformedVoteStructure('invalid vote structure for homomorphic addition') from None
        if not 0 <= raw_value < public_key.nsquare:
            raise MalformedVoteStructure('ciphertext must be in the range [0, n²)')
        return cls(public_key, raw_value)

    def __eq__(self, other):
        if not isinstance(other, PaillierCiphertext):
            return NotImplemented
        return self.public_key == other.public_key and self.raw_value == other.raw_value

    def __hash__(self):
        return hash(self.raw_value)

    def __repr__(self):
        return 'PaillierCiphertext({})'.format(self.raw_value)

    def __str__(self):
        return str(self.raw_value)

    def __add__(a, b):
        """Homomorphically add two Paillier ciphertexts together

        Arguments:
            a (PaillierCiphertext): left operand
            b (PaillierCiphertext or int): right operand

        Returns:
            PaillierCiphertext: decrypting this ciphertext should yield the sum
                of the values obtained by decrypting the ciphertexts `a` and
                `b` (or `b` itself)
        """
        pk = a.public_key
        if not isinstance(b, PaillierCiphertext):
            b, _ = pk.raw_encrypt(b, randomization=1)
        elif b.public_key != pk:
            raise ValueError('cannot sum values under different public keys')
        else:
            b = b.raw_value
        return PaillierCiphertext(pk, a.raw_value * b % pk.nsquare)

    def __radd__(a, b):
        """Homomorphically add two Paillier ciphertexts together

        Allows `sum()` over ciphertexts.
        """
        return a + b


class EncryptedVote:
    """Output of `encrypt()`

    Attributes:
        ciphertext (PaillierCiphertext): the encrypted vote
        randomness (int): the blinding factor `r` used for the encryption
    """
    def __init__(self, ciphertext, randomness):
        self.ciphertext = ciphertext
        self.randomness = randomness

    def __repr__(self):
        return 'EncryptedVote({!r})'.format(self.ciphertext)

    def to_dict(self):
        return {'ciphertext': str(self.ciphertext.raw_value), 'randomness': str(self.randomness)}


def encrypt(vote, public_key):
    """Encrypt a vote under the given public key (see `PaillierPublicKey.encrypt`)"""
    return public_key.encrypt(vote)


def add_encrypted(ciphertexts, public_key):
    """Homomorphically add ciphertexts

    Each element is normalized with `PaillierCiphertext.from_ref()`; an element
    that cannot be parsed aborts the whole sum.

    Arguments:
        ciphertexts (iterable): ciphertext references under `public_key`
        public_key (PaillierPublicKey): the election public key

    Returns:
        PaillierCiphertext: an encryption of the sum of the plaintexts
    """
    public_key.check()
    raw_values = [
        PaillierCiphertext.from_ref(public_key, ref).raw_value
        for ref in ciphertexts
    ]
    logger.debug('adding %d encrypted votes', len(raw_values))
    return PaillierCiphertext(public_key, util.prod(raw_values, public_key.nsquare))


def decrypt(ciphertext, secret_key):
    """Decrypt with a full secret key (see `PaillierSecretKey.decrypt`)"""
    return secret_key.decrypt(ciphertext)
