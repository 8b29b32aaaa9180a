"""Tests for the PoolLedger state machine."""

import pytest

from shieldpool import (
    UINT64_MAX,
    BaseLedgerFailure,
    CustodyAdapter,
    InMemoryLedger,
    InsufficientFunds,
    InsufficientPoolBalance,
    InvalidAmount,
    NonceMismatch,
    Overflow,
    PoolConfig,
    PoolLedger,
    PoolState,
    ProofInvalid,
    RecordMismatch,
    SignatureInvalid,
    TransitionInProgress,
    TransactionRecord,
    VerifiedTransaction,
    commit,
    deposit_fields,
    generate_keypair,
    prove,
    sign_fields,
)

COMMITMENT = commit([1])


def signed_deposit(private_key, amount, commitment_hash=COMMITMENT):
    return sign_fields(deposit_fields(commitment_hash, amount), private_key)


def fund_pool(pool, keypair, amount):
    """Deposit into ``pool`` and put matching value in its custody account."""
    priv, pub = keypair
    pool.adapter.ledger.fund(pool.adapter.address, amount)
    return pool.deposit(pub, COMMITMENT, amount, signed_deposit(priv, amount))


def exit_proof(pool, sender, recipient_pub, amount, nonce=None):
    record = TransactionRecord(
        sender=sender[1],
        recipient=recipient_pub,
        amount=amount,
        nonce=pool.next_nonce if nonce is None else nonce,
    )
    return prove(record, sender[0])


class TestInitialState:
    def test_defaults(self, pool):
        assert pool.pool_balance == 0
        assert pool.next_nonce == 1
        assert pool.state == PoolState(0, 1, 0)

    def test_configured_initial_nonce(self, ledger, custody):
        pool = PoolLedger(CustodyAdapter(ledger, custody), config=PoolConfig(initial_nonce=10))
        assert pool.next_nonce == 10

    def test_initial_balance_above_max_rejected(self, ledger, custody):
        with pytest.raises(ValueError):
            PoolLedger(
                CustodyAdapter(ledger, custody),
                config=PoolConfig(max_balance=10),
                state=PoolState(pool_balance=11),
            )


class TestDeposit:
    def test_scenario_a(self, pool, alice):
        priv, pub = alice
        amount = 1_000_000_000
        state = pool.deposit(pub, COMMITMENT, amount, signed_deposit(priv, amount))
        assert pool.pool_balance == 1_000_000_000
        assert state.version == 1
        assert pool.next_nonce == 1

    def test_zero_amount(self, pool, alice):
        priv, pub = alice
        with pytest.raises(InvalidAmount, match="must be positive"):
            pool.deposit(pub, COMMITMENT, 0, signed_deposit(priv, 1))
        assert pool.state == PoolState()

    def test_scenario_d_wrong_key(self, pool, alice, bob):
        _, alice_pub = alice
        bob_priv, _ = bob
        amount = 1_000_000_000
        with pytest.raises(SignatureInvalid):
            pool.deposit(alice_pub, COMMITMENT, amount, signed_deposit(bob_priv, amount))
        assert pool.pool_balance == 0

    def test_signature_bound_to_amount(self, pool, alice):
        priv, pub = alice
        sig = signed_deposit(priv, 100)
        with pytest.raises(SignatureInvalid):
            pool.deposit(pub, COMMITMENT, 1_000, sig)

    def test_signature_bound_to_hash(self, pool, alice):
        priv, pub = alice
        sig = signed_deposit(priv, 100)
        with pytest.raises(SignatureInvalid):
            pool.deposit(pub, commit([2]), 100, sig)

    def test_overflow_at_configured_max(self, ledger, custody, alice):
        priv, pub = alice
        pool = PoolLedger(CustodyAdapter(ledger, custody), config=PoolConfig(max_balance=1_000))
        pool.deposit(pub, COMMITMENT, 600, signed_deposit(priv, 600))
        with pytest.raises(Overflow):
            pool.deposit(pub, COMMITMENT, 600, signed_deposit(priv, 600))
        assert pool.pool_balance == 600

    def test_overflow_at_u64_max(self, ledger, custody, alice):
        priv, pub = alice
        pool = PoolLedger(
            CustodyAdapter(ledger, custody), state=PoolState(pool_balance=UINT64_MAX - 1)
        )
        pool.deposit(pub, COMMITMENT, 1, signed_deposit(priv, 1))
        assert pool.pool_balance == UINT64_MAX
        with pytest.raises(Overflow):
            pool.deposit(pub, COMMITMENT, 1, signed_deposit(priv, 1))
        assert pool.pool_balance == UINT64_MAX


class TestClaim:
    def test_scenario_b(self, pool, ledger, alice, bob):
        fund_pool(pool, alice, 5_000_000_000)
        before = ledger.balance(bob[1])
        verified = exit_proof(pool, alice, bob[1], 1_000_000_000)

        pool.claim(verified)

        assert pool.pool_balance == 4_000_000_000
        assert pool.next_nonce == 2
        assert ledger.balance(bob[1]) == before + 1_000_000_000

    def test_scenario_c(self, pool, alice, bob):
        fund_pool(pool, alice, 5_000_000_000)
        verified = exit_proof(pool, alice, bob[1], 10_000_000_000)
        before = pool.state
        with pytest.raises(InsufficientPoolBalance):
            pool.claim(verified)
        assert pool.state == before

    def test_exact_balance_empties_pool(self, pool, alice, bob):
        fund_pool(pool, alice, 1_000)
        pool.claim(exit_proof(pool, alice, bob[1], 1_000))
        assert pool.pool_balance == 0

    def test_balance_plus_one_rejected(self, pool, alice, bob):
        fund_pool(pool, alice, 1_000)
        with pytest.raises(InsufficientPoolBalance):
            pool.claim(exit_proof(pool, alice, bob[1], 1_001))
        assert pool.pool_balance == 1_000
        assert pool.next_nonce == 1

    def test_double_submission_rejected(self, pool, alice, bob):
        fund_pool(pool, alice, 5_000)
        verified = exit_proof(pool, alice, bob[1], 1_000)
        pool.claim(verified)
        with pytest.raises(NonceMismatch, match="already consumed"):
            pool.claim(verified)
        assert pool.pool_balance == 4_000
        assert pool.next_nonce == 2

    def test_future_nonce_rejected(self, pool, alice, bob):
        fund_pool(pool, alice, 5_000)
        verified = exit_proof(pool, alice, bob[1], 1_000, nonce=5)
        with pytest.raises(NonceMismatch, match="not yet valid"):
            pool.claim(verified)
        assert pool.next_nonce == 1

    def test_tampered_artifact_rejected(self, pool, alice, bob):
        fund_pool(pool, alice, 5_000)
        verified = exit_proof(pool, alice, bob[1], 1_000)
        forged = VerifiedTransaction(
            hash=verified.hash,
            record=TransactionRecord(
                sender=alice[1], recipient=alice[1], amount=1_000, nonce=1
            ),
            signature=verified.signature,
        )
        with pytest.raises(ProofInvalid):
            pool.claim(forged)
        assert pool.state.version == 1


class TestWithdraw:
    def test_matching_parameters(self, pool, ledger, alice, bob):
        fund_pool(pool, alice, 5_000)
        verified = exit_proof(pool, alice, bob[1], 2_000)
        before = ledger.balance(bob[1])
        pool.withdraw(verified, bob[1], 2_000)
        assert pool.pool_balance == 3_000
        assert pool.next_nonce == 2
        assert ledger.balance(bob[1]) == before + 2_000

    def test_recipient_substitution_rejected(self, pool, alice, bob):
        fund_pool(pool, alice, 5_000)
        verified = exit_proof(pool, alice, bob[1], 2_000)
        _, mallory = generate_keypair()
        with pytest.raises(RecordMismatch):
            pool.withdraw(verified, mallory, 2_000)
        assert pool.pool_balance == 5_000
        assert pool.next_nonce == 1

    def test_amount_substitution_rejected(self, pool, alice, bob):
        fund_pool(pool, alice, 5_000)
        verified = exit_proof(pool, alice, bob[1], 2_000)
        with pytest.raises(ProofInvalid):
            pool.withdraw(verified, bob[1], 4_000)
        assert pool.pool_balance == 5_000


class TestBaseLedgerFailure:
    def test_failed_payout_leaves_state_unchanged(self, pool, alice, bob):
        priv, pub = alice
        # Accounted for, but never moved into custody.
        pool.deposit(pub, COMMITMENT, 5_000, signed_deposit(priv, 5_000))
        before = pool.state
        verified = exit_proof(pool, alice, bob[1], 1_000)

        with pytest.raises(BaseLedgerFailure) as excinfo:
            pool.claim(verified)

        assert isinstance(excinfo.value.__cause__, InsufficientFunds)
        assert pool.state == before
        assert len(pool.journal) == 1

    def test_failure_is_logged(self, pool, alice, bob, caplog):
        priv, pub = alice
        pool.deposit(pub, COMMITMENT, 5_000, signed_deposit(priv, 5_000))
        with pytest.raises(BaseLedgerFailure):
            pool.claim(exit_proof(pool, alice, bob[1], 1_000))
        assert any(r.levelname == "ERROR" for r in caplog.records)

    def test_artifact_usable_after_failure(self, pool, alice, bob):
        priv, pub = alice
        pool.deposit(pub, COMMITMENT, 5_000, signed_deposit(priv, 5_000))
        verified = exit_proof(pool, alice, bob[1], 1_000)
        with pytest.raises(BaseLedgerFailure):
            pool.claim(verified)

        pool.adapter.ledger.fund(pool.adapter.address, 5_000)
        pool.claim(verified)
        assert pool.pool_balance == 4_000
        assert pool.next_nonce == 2


class FakeVerifier:
    """Accepts or rejects every artifact without looking at it."""

    def __init__(self, accept=True):
        self.accept = accept
        self.checked = []

    def verify(self, hash, record, signature):
        return VerifiedTransaction(hash=hash, record=record, signature=signature)

    def check(self, verified):
        self.checked.append(verified)
        if not self.accept:
            raise ProofInvalid("rejected by fake verifier")


class TestInjectedVerifier:
    def _record(self, alice, bob, nonce=1):
        return TransactionRecord(sender=alice[1], recipient=bob[1], amount=10, nonce=nonce)

    def test_pool_consults_verifier_on_consumption(self, ledger, custody, alice, bob):
        verifier = FakeVerifier()
        pool = PoolLedger(CustodyAdapter(ledger, custody), verifier=verifier)
        fund_pool(pool, alice, 100)
        verified = verifier.verify("unchecked", self._record(alice, bob), "unsigned")
        pool.claim(verified)
        assert verifier.checked == [verified]
        assert pool.pool_balance == 90

    def test_rejecting_verifier_blocks_exit(self, ledger, custody, alice, bob):
        verifier = FakeVerifier(accept=False)
        pool = PoolLedger(CustodyAdapter(ledger, custody), verifier=verifier)
        fund_pool(pool, alice, 100)
        verified = verifier.verify("unchecked", self._record(alice, bob), "unsigned")
        with pytest.raises(ProofInvalid):
            pool.claim(verified)
        assert pool.pool_balance == 100
        assert pool.next_nonce == 1


class TestInvariants:
    def test_nonce_strictly_increasing_and_balance_bounded(self, alice, bob):
        ledger = InMemoryLedger()
        custody = generate_keypair()[1]
        pool = PoolLedger(CustodyAdapter(ledger, custody), config=PoolConfig(max_balance=10_000))
        nonces = [pool.next_nonce]
        deposits = [4_000, 3_000, 5_000, 2_000, 1_000]
        exits = [1_500, 9_000, 2_500, 3_000, 3_500]

        rejected = 0
        for dep, out in zip(deposits, exits):
            try:
                fund_pool(pool, alice, dep)
            except Overflow:
                rejected += 1
            try:
                pool.claim(exit_proof(pool, alice, bob[1], out))
            except InsufficientPoolBalance:
                rejected += 1
            assert 0 <= pool.pool_balance <= 10_000
            nonces.append(pool.next_nonce)

        steps = [b - a for a, b in zip(nonces, nonces[1:])]
        assert set(steps) <= {0, 1}
        assert rejected == 3
        assert pool.next_nonce == 4
        assert pool.pool_balance == 3_000


class TestNotifications:
    def test_events_emitted_after_commit(self, pool, alice, bob):
        events = []
        pool.subscribe(events.append)
        fund_pool(pool, alice, 5_000)
        pool.claim(exit_proof(pool, alice, bob[1], 1_000))

        assert [e.kind for e in events] == ["deposit", "claim"]
        assert events[0].address == alice[1]
        assert events[0].amount == 5_000
        assert events[1].address == bob[1]
        assert events[1].amount == 1_000
        assert events[1].state == pool.state

    def test_no_event_on_rejection(self, pool, alice):
        events = []
        pool.subscribe(events.append)
        with pytest.raises(InvalidAmount):
            pool.deposit(alice[1], COMMITMENT, 0, "")
        assert events == []

    def test_failing_subscriber_does_not_undo_commit(self, pool, alice):
        def boom(event):
            raise RuntimeError("subscriber down")

        pool.subscribe(boom)
        fund_pool(pool, alice, 100)
        assert pool.pool_balance == 100


class TestMalformedDeposit:
    def test_non_hex_hash(self, pool, alice):
        priv, pub = alice
        with pytest.raises(SignatureInvalid, match="Malformed commitment hash"):
            pool.deposit(pub, "not-hex", 100, signed_deposit(priv, 100))
        assert pool.state == PoolState()

    def test_short_hash(self, pool, alice):
        priv, pub = alice
        with pytest.raises(SignatureInvalid):
            pool.deposit(pub, COMMITMENT[:10], 100, signed_deposit(priv, 100))
        assert pool.state == PoolState()

    def test_non_string_signature(self, pool, alice):
        with pytest.raises(SignatureInvalid):
            pool.deposit(alice[1], COMMITMENT, 100, 12345)
        assert pool.state == PoolState()
        assert len(pool.journal) == 0

    def test_non_bytes_sender(self, pool, alice):
        priv, _ = alice
        with pytest.raises(SignatureInvalid) as excinfo:
            pool.deposit("alice", COMMITMENT, 100, signed_deposit(priv, 100))
        assert excinfo.value.data == {"sender": "'alice'"}
        assert pool.state == PoolState()


class TestPoolStateValidation:
    @pytest.mark.parametrize(
        "fields",
        [
            {"pool_balance": -5},
            {"next_nonce": -1},
            {"version": -1},
            {"pool_balance": 1.5},
            {"next_nonce": True},
        ],
    )
    def test_invalid_scalars_rejected(self, fields):
        with pytest.raises(ValueError):
            PoolState(**fields)

    def test_from_dict_rejects_negative_balance(self):
        with pytest.raises(ValueError, match="pool_balance"):
            PoolState.from_dict({"pool_balance": -5, "next_nonce": 1})


class ReentrantAdapter(CustodyAdapter):
    """Pays, then replays the same exit from inside the payout."""

    def __init__(self, ledger, address, swallow=True):
        super().__init__(ledger, address)
        self.swallow = swallow
        self.pool = None
        self.replay = None
        self.reentry_errors = []

    def send(self, address, amount):
        super().send(address, amount)
        if self.replay is None:
            return
        verified, self.replay = self.replay, None
        try:
            self.pool.claim(verified)
        except TransitionInProgress as exc:
            self.reentry_errors.append(exc)
            if not self.swallow:
                raise


class TestReentrantPayout:
    def _setup(self, ledger, custody, alice, bob, swallow=True):
        adapter = ReentrantAdapter(ledger, custody, swallow=swallow)
        pool = PoolLedger(adapter)
        adapter.pool = pool
        fund_pool(pool, alice, 5_000)
        verified = exit_proof(pool, alice, bob[1], 1_000)
        adapter.replay = verified
        return pool, adapter, verified

    def test_replay_from_payout_refused(self, ledger, custody, alice, bob):
        pool, adapter, _ = self._setup(ledger, custody, alice, bob)
        bob_before = ledger.balance(bob[1])

        pool.claim(adapter.replay)

        assert len(adapter.reentry_errors) == 1
        assert ledger.balance(bob[1]) == bob_before + 1_000
        assert pool.pool_balance == 4_000
        assert pool.pool_balance == ledger.balance(custody)
        assert pool.next_nonce == 2

    def test_deposit_from_payout_refused(self, ledger, custody, alice, bob):
        class DepositingAdapter(CustodyAdapter):
            def send(self, address, amount):
                super().send(address, amount)
                pool.deposit(alice[1], COMMITMENT, 10, signed_deposit(alice[0], 10))

        pool = PoolLedger(DepositingAdapter(ledger, custody))
        fund_pool(pool, alice, 5_000)
        with pytest.raises(BaseLedgerFailure) as excinfo:
            pool.claim(exit_proof(pool, alice, bob[1], 1_000))
        assert isinstance(excinfo.value.__cause__, TransitionInProgress)
        assert pool.pool_balance == 4_000

    def test_propagated_reentry_keeps_debit(self, ledger, custody, alice, bob):
        pool, adapter, verified = self._setup(ledger, custody, alice, bob, swallow=False)

        with pytest.raises(BaseLedgerFailure) as excinfo:
            pool.claim(verified)

        assert excinfo.value.data["committed"] is True
        assert isinstance(excinfo.value.__cause__, TransitionInProgress)
        assert pool.pool_balance == 4_000
        assert pool.pool_balance == ledger.balance(custody)
        assert pool.next_nonce == 2
        with pytest.raises(NonceMismatch, match="already consumed"):
            pool.claim(verified)


class FlakyAdapter(CustodyAdapter):
    """Completes the transfer, then reports a transport error."""

    def send(self, address, amount):
        super().send(address, amount)
        raise ConnectionError("lost response from base ledger")


class TestAmbiguousPayout:
    def test_debit_kept_when_outcome_unknown(self, ledger, custody, alice, bob):
        pool = PoolLedger(FlakyAdapter(ledger, custody))
        fund_pool(pool, alice, 5_000)
        verified = exit_proof(pool, alice, bob[1], 1_000)

        with pytest.raises(BaseLedgerFailure) as excinfo:
            pool.claim(verified)

        assert excinfo.value.data["committed"] is True
        assert pool.pool_balance == ledger.balance(custody) == 4_000
        assert pool.next_nonce == 2
        assert pool.journal[-1].metadata["confirmed"] is False
        assert pool.journal.verify() == (True, None)

    def test_no_event_when_outcome_unknown(self, ledger, custody, alice, bob):
        pool = PoolLedger(FlakyAdapter(ledger, custody))
        fund_pool(pool, alice, 5_000)
        events = []
        pool.subscribe(events.append)
        with pytest.raises(BaseLedgerFailure):
            pool.claim(exit_proof(pool, alice, bob[1], 1_000))
        assert events == []

    def test_declared_refusal_reports_uncommitted(self, pool, alice, bob):
        priv, pub = alice
        pool.deposit(pub, COMMITMENT, 5_000, signed_deposit(priv, 5_000))
        with pytest.raises(BaseLedgerFailure) as excinfo:
            pool.claim(exit_proof(pool, alice, bob[1], 1_000))
        assert excinfo.value.data["committed"] is False
