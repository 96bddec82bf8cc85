#!/usr/bin/env python3
"""Some utilities (mostly arithmetic)

Every other module relies on these wrappers rather than on `gmpy2` directly,
so that results are always plain Python integers.
"""
import os
import random

import gmpy2

import config
from errors import KeyGenerationFailure


def powmod(x, y, m):
    """Computes `x^y mod m`

    The method `powmod()` from `gmpy2` is faster than Python's builtin
    `powmod()`. However, it does add some overhead which should be skipped for
    `x = 1`.

    Arguments:
        x (int): base of the exponentiation
        y (int): exponent
        m (int): modulus

    Returns:
        int: the result of `x^y mod m`
    """
    if x == 1:
        return 1
    elif y < 0:
        return invert(powmod(x, -y, m), m)
    else:
        return int(gmpy2.powmod(x, y, m))


def invert(x, m):
    """Computes the invert of `x` modulo `m`

    This is a wrapper for `invert() from `gmpy2`.

    Arguments:
        x (int): element to be inverted (may be negative)
        m (int): modulus

    Returns:
        int: y such that `x × y = 1 mod m`

    Raises:
        ZeroDivisionError: when `x` is not invertible modulo `m`
    """
    return int(gmpy2.invert(x % m, m))


def is_prime(x, rounds=config.MILLER_RABIN_ROUNDS):
    """Tests whether `x` is probably prime

    This is a wrapper for `is_prime() from `gmpy2`, which runs `rounds`
    Miller-Rabin tests (error probability at most 4^-rounds).

    Arguments:
        x (int): the candidate prime
        rounds (int): number of Miller-Rabin rounds

    Returns:
        bool: `True` if `x` is probably prime else `False`
    """
    return bool(gmpy2.is_prime(x, rounds))


def gcd(a, b):
    """Greatest common divisor of `a` and `b`"""
    return int(gmpy2.gcd(a, b))


def lcm(a, b):
    """Least common multiple of `a` and `b`"""
    return int(gmpy2.lcm(a, b))


def random_bytes_int(n_bytes):
    """Draw a non-negative integer from `n_bytes` bytes of system randomness

    Failure of the operating system's randomness source is not caught: no
    cryptographic operation can continue without it.
    """
    return int.from_bytes(os.urandom(n_bytes), 'big')


def random_below(bound):
    """Uniformly random integer from `[0, bound)`"""
    return random.SystemRandom().randrange(bound)


def genprime(n_bits, attempts=config.PRIME_ATTEMPTS,
             rounds=config.MILLER_RABIN_ROUNDS):
    """Generate a probable prime number of exactly n_bits

    Candidates are drawn by rejection sampling: a random odd integer whose top
    bit is set, discarded when divisible by one of `config.SMALL_PRIMES`, and
    otherwise kept if it passes `rounds` Miller-Rabin tests.

    Arguments:
        n_bits (int): the size of the prime to be generated, in bits
        attempts (int): maximum number of candidates to try
        rounds (int): number of Miller-Rabin rounds per candidate

    Returns:
        int: a probable prime `x` from `[2^(n_bits-1), 2^n_bits)`

    Raises:
        KeyGenerationFailure: when no prime was found within `attempts`
    """
    if n_bits < 8:
        raise KeyGenerationFailure('cannot generate a {}-bit prime'.format(n_bits))
    n_bytes = (n_bits + 7) // 8
    mask = (1 << n_bits) - 1
    for _ in range(attempts):
        candidate = random_bytes_int(n_bytes) & mask
        candidate |= (1 << (n_bits - 1)) | 1
        if any(candidate % p == 0 for p in config.SMALL_PRIMES):
            continue
        if is_prime(candidate, rounds):
            return candidate
    raise KeyGenerationFailure(
        'failed to generate {}-bit prime after {} attempts'.format(n_bits, attempts)
    )


def prod(elements_iterable, modulus=None):
    """Computes the product of the given elements

    Arguments:
        elements_iterable (iterable): values (int) to be multiplied together
        modulus (int): if provided, the result will be given modulo this value

    Returns:
        int: the product of the elements from elements_iterable; 1 for an
        empty iterable

        If modulus is not None, then the result is reduced modulo the provided
        value.
    """
    product = 1
    for element in elements_iterable:
        product *= element
        if modulus is not None:
            product %= modulus
    return product
