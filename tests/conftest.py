"""
Pytest fixtures for the ShieldTx SDK tests.
"""
import time

import pytest

from shieldtx_sdk.config import TransferConfig
from shieldtx_sdk.models import BuiltTx, TxVerdict
from shieldtx_sdk.preconditions import PreconditionChecker
from shieldtx_sdk.session import ChainSession, RetryPolicy, SessionBootstrapper
from shieldtx_sdk.shielded.context import ShieldedContext
from shieldtx_sdk.shielded.notes import SealedBoxNoteBuilder, SpendingKey
from shieldtx_sdk.transport import LocalLedger
from shieldtx_sdk.transport import _rate_limited_log
from shieldtx_sdk.tx.builders import TxArgs
from shieldtx_sdk.tx.classify import ResultClassifier
from shieldtx_sdk.tx.signing import Signer
from shieldtx_sdk.tx.submit import Submitter
from shieldtx_sdk.wallet import Wallet
from shieldtx_sdk.wallet.crypto import derive_address, load_secret_key, public_key_hex

# Constants for testing
TEST_CHAIN_ID = "local-devnet.000000"
TEST_SOURCE_SECRET = "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"
TEST_TARGET_SECRET = "fedcba9876543210fedcba9876543210fedcba9876543210fedcba9876543210"
TEST_SPENDING_KEY = "5a" * 32
TEST_FUNDS = 1000
TEST_AMOUNT = 100

TEST_SOURCE_PK = public_key_hex(load_secret_key(TEST_SOURCE_SECRET))
TEST_SOURCE_ADDRESS = derive_address(TEST_SOURCE_PK)
TEST_TARGET_ADDRESS = derive_address(public_key_hex(load_secret_key(TEST_TARGET_SECRET)))


def make_ledger(balance: int = TEST_FUNDS, **kwargs) -> LocalLedger:
    """Initialized local ledger with the test source funded."""
    ledger = LocalLedger(chain_id=TEST_CHAIN_ID, **kwargs)
    ledger.initialize("local")
    if balance:
        ledger.credit(TEST_SOURCE_ADDRESS, ledger.native_token, balance)
    return ledger


def make_session(ledger: LocalLedger) -> ChainSession:
    """In-memory session over ledger with the test source registered."""
    session = ChainSession(ledger, ledger.chain_id, Wallet(), ShieldedContext())
    session.register_source(TEST_SOURCE_SECRET)
    return session


def execute_tx(session: ChainSession, built: BuiltTx) -> TxVerdict:
    """Sign, submit and classify, raising on rejection."""
    signed = Signer(session.wallet).sign(built)
    outcome = Submitter(session).submit(signed)
    return ResultClassifier().require_accepted(signed, outcome)


# Make time.sleep instantaneous so retry loops don't slow the suite down
@pytest.fixture(autouse=True)
def _fast_sleep(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda *_a, **_kw: None)


@pytest.fixture(autouse=True)
def _reset_rate_limited_log():
    _rate_limited_log.reset()
    yield
    _rate_limited_log.reset()


@pytest.fixture
def ledger():
    return make_ledger()


@pytest.fixture
def session(ledger):
    return make_session(ledger)


@pytest.fixture
def revealed_session(session):
    """Session whose source public key is already revealed on chain."""
    checker = PreconditionChecker(session, lambda built: execute_tx(session, built))
    checker.ensure_public_key_revealed(TEST_SOURCE_PK, tx_args())
    return session


@pytest.fixture
def note_builder():
    return SealedBoxNoteBuilder()


@pytest.fixture
def spending_key():
    return SpendingKey.decode(TEST_SPENDING_KEY)


@pytest.fixture
def config_values(tmp_path):
    return {
        "rpc": "local",
        "source_private_key": TEST_SOURCE_SECRET,
        "target_address": TEST_TARGET_ADDRESS,
        "amount": TEST_AMOUNT,
        "chain_id": TEST_CHAIN_ID,
        "spending_key": TEST_SPENDING_KEY,
        "base_dir": tmp_path,
    }


@pytest.fixture
def config(config_values):
    return TransferConfig.create(config_values)


@pytest.fixture
def bootstrapper(config, ledger):
    return SessionBootstrapper(
        config,
        transport_factory=lambda: ledger,
        retry_policy=RetryPolicy(backoff=0, max_attempts=3, sleep=lambda _s: None)
    )


def tx_args(**overrides) -> TxArgs:
    values = {"fee_payer": TEST_SOURCE_PK, "signing_keys": [TEST_SOURCE_PK]}
    values.update(overrides)
    return TxArgs(**values)
