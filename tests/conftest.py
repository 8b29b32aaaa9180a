"""Shared fixtures: keypairs, a funded base ledger, and a pool wired to it."""

import pytest

from shieldpool import CustodyAdapter, InMemoryLedger, PoolClient, PoolLedger, generate_keypair

INITIAL_BALANCE = 10_000_000_000


@pytest.fixture
def alice():
    """(private_key, public_key) of the depositor."""
    return generate_keypair()


@pytest.fixture
def bob():
    """(private_key, public_key) of a recipient."""
    return generate_keypair()


@pytest.fixture
def custody():
    return generate_keypair()[1]


@pytest.fixture
def ledger(alice, bob):
    ledger = InMemoryLedger()
    ledger.fund(alice[1], INITIAL_BALANCE)
    ledger.fund(bob[1], INITIAL_BALANCE)
    return ledger


@pytest.fixture
def pool(ledger, custody):
    return PoolLedger(adapter=CustodyAdapter(ledger, custody))


@pytest.fixture
def client(pool, ledger, custody):
    return PoolClient(pool, ledger, custody)
