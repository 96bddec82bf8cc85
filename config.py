"""
Configuration for the voting cryptography engine.

Module-level defaults shared by every component. Functions take these as
keyword-argument defaults; the command line entry point overrides them.
"""
import os

# Paillier key generation
DEFAULT_KEY_BITS = 2048
PRIME_ATTEMPTS = 2000
MILLER_RABIN_ROUNDS = 15  # error probability <= 4^-15 = 2^-30
SMALL_PRIMES = (3, 5, 7, 11, 13, 17)

# Threshold decryption: any K of N shares reconstruct the key
DEFAULT_THRESHOLD_N = 5
DEFAULT_THRESHOLD_K = 3

# Encryption
ENCRYPTION_ATTEMPTS = 1000
MIN_MODULUS = 100  # smaller moduli mean corrupted key material

# Zero-knowledge proofs
CURVE_NAME = "secp256k1"
HASH_ALGORITHM = "sha256"
GENERATOR_H_LABEL = "voting-engine/pedersen-h"

# Mixnet
MIX_ROUNDS = 3

# Logging configuration
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVEL = os.environ.get("VOTING_ENGINE_LOG_LEVEL", "INFO")
