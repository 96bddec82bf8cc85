#!/usr/bin/env python3
import random
import logging
import argparse
import datetime

import config
import keys
import ballot
import mixnet
from store import InMemoryElectionStore

logger = logging.getLogger('voting_engine')


def run_election(args, seed):
    """Run a full election with random votes and check the tally"""
    rng = random.Random(seed)
    candidates = ['candidate-{}'.format(i) for i in range(args.candidates)]
    election_id = 'election-{}'.format(seed)
    store = InMemoryElectionStore()

    start = datetime.datetime.now()
    election_keys = keys.generate_keys(args.bits, args.shares, args.threshold)
    election_keys = store.activate_keys(election_id, election_keys)
    logger.info('Keys generated in %s', datetime.datetime.now() - start)

    votes = [rng.randrange(len(candidates)) for _ in range(args.voters)]
    logger.debug('votes = %s', votes)

    # cast
    start = datetime.datetime.now()
    ballots = [
        ballot.cast_ballot(election_keys, 'voter-{}'.format(i), election_id, vote,
                           candidates, store)
        for i, vote in enumerate(votes)
    ]
    logger.info('%d ballots cast in %s', len(ballots), datetime.datetime.now() - start)

    # verify
    for i, b in enumerate(ballots):
        outcome = ballot.verify_ballot(b, candidates, 'voter-{}'.format(i), election_id)
        assert outcome, outcome.reason

    # shuffle
    mix = mixnet.Mixnet(election_keys.public_key, args.rounds)
    for i in range(args.rounds):
        mix.add_mix_node('mix-node-{}'.format(i))
    result = mix.shuffle(store.ciphertexts(election_id))
    outcome = mixnet.verify_shuffle_chain(result, election_keys.public_key)
    assert outcome, outcome.reason
    logger.info('Mixnet: %s', mix.statistics())

    # tally
    start = datetime.datetime.now()
    total = ballot.tally_ballots(election_keys, result.shuffled)
    logger.info('Tally %d (expected %d) in %s', total, sum(votes),
                datetime.datetime.now() - start)
    assert total == sum(votes)
    return total


def main():
    parser = argparse.ArgumentParser()
    parser.description = 'Threshold Paillier election with ballot proofs and a mixnet'
    parser.add_argument('--debug', '-d', default=1, type=int)
    parser.add_argument('--bits', '-l', default=config.DEFAULT_KEY_BITS, type=int)
    parser.add_argument('--shares', '-n', default=config.DEFAULT_THRESHOLD_N, type=int)
    parser.add_argument('--threshold', '-k', default=config.DEFAULT_THRESHOLD_K, type=int)
    parser.add_argument('--candidates', '-m', default=2, type=int)
    parser.add_argument('--voters', default=5, type=int)
    parser.add_argument('--rounds', default=config.MIX_ROUNDS, type=int)
    parser.add_argument('--simulations', default=1, type=int)
    parser.add_argument('seed', default=0, type=int, nargs='?')
    args = parser.parse_args()

    levels = {0: logging.WARNING, 1: logging.INFO, 2: logging.DEBUG}
    logging.basicConfig(
        format=config.LOG_FORMAT,
        level=levels.get(args.debug, config.LOG_LEVEL),
    )

    max_simulations = args.simulations if args.simulations >= 0 else float('inf')
    seed = args.seed
    simulated = 0
    while simulated < max_simulations:
        logger.info('Seed: %d', seed)
        run_election(args, seed)
        seed += 1
        simulated += 1


if __name__ == '__main__':
    main()
