"""
Tests for the shielded sync coordinator.
"""
import os
import signal
import threading

import pytest

from shieldtx_sdk.exceptions import BuildError, SyncIncompleteError, TransportError
from shieldtx_sdk.models import TransferIntent
from shieldtx_sdk.shielded.context import ShieldedContext
from shieldtx_sdk.shielded.sync import ShieldedSyncCoordinator, shutdown_signal
from shieldtx_sdk.tx.builders import ShieldingTransferBuilder, UnshieldingTransferBuilder

from conftest import TEST_SOURCE_ADDRESS, execute_tx, tx_args


def shield(session, note_builder, spending_key, amount):
    address = note_builder.derive_payment_address(spending_key.viewing_key())
    intent = TransferIntent(source=TEST_SOURCE_ADDRESS, target=address, token=session.native_token, amount=amount)
    return execute_tx(session, ShieldingTransferBuilder(session, note_builder).build(intent, tx_args())).height


@pytest.fixture
def chain_with_notes(revealed_session, ledger, note_builder, spending_key):
    """Three notes spread over a chain of a few dozen blocks."""
    heights = []
    for amount in (10, 20, 30):
        ledger.advance(7)
        heights.append(shield(revealed_session, note_builder, spending_key, amount))
    ledger.advance(5)
    return revealed_session, heights


class TestShieldedSync:
    """Tests for ShieldedSyncCoordinator."""

    def test_sync_to_tip(self, chain_with_notes, ledger, spending_key):
        session, heights = chain_with_notes
        vk = spending_key.viewing_key()
        checkpoint = ShieldedSyncCoordinator(session, [vk], batch_size=4, workers=3).sync()
        assert checkpoint == ledger.height
        assert session.shielded.balance(vk, session.native_token) == 60
        assert sorted(n.height for n in session.shielded.notes.values()) == heights

    def test_parallel_scan_equals_sequential(self, chain_with_notes, spending_key):
        session, _ = chain_with_notes
        vk = spending_key.viewing_key()

        ShieldedSyncCoordinator(session, [vk], batch_size=3, workers=4).sync()
        parallel = (session.shielded.checkpoint, dict(session.shielded.notes))

        session.shielded = ShieldedContext()
        ShieldedSyncCoordinator(session, [vk], batch_size=1, workers=1).sync()
        sequential = (session.shielded.checkpoint, dict(session.shielded.notes))

        assert parallel == sequential

    def test_blocks_applied_in_height_order(self, chain_with_notes, spending_key):
        session, _ = chain_with_notes
        fetch = session.transport.fetch_blocks
        session.transport.fetch_blocks = lambda start, end: list(reversed(fetch(start, end)))
        vk = spending_key.viewing_key()
        ShieldedSyncCoordinator(session, [vk], batch_size=50, workers=2).sync()
        assert session.shielded.balance(vk, session.native_token) == 60

    def test_resumes_from_checkpoint(self, chain_with_notes, ledger, spending_key):
        session, _ = chain_with_notes
        vk = spending_key.viewing_key()
        coordinator = ShieldedSyncCoordinator(session, [vk], batch_size=5, workers=2)
        coordinator.sync(end_height=10)
        assert session.shielded.checkpoint == 10

        requested = []
        fetch = session.transport.fetch_blocks
        session.transport.fetch_blocks = lambda start, end: requested.append(start) or fetch(start, end)
        coordinator.sync()
        assert min(requested) == 11
        assert session.shielded.checkpoint == ledger.height

    def test_start_height_below_checkpoint_rescans(self, chain_with_notes, spending_key):
        session, heights = chain_with_notes
        vk = spending_key.viewing_key()
        session.shielded.checkpoint = heights[-1] + 2
        # Notes below the stale checkpoint are recovered by starting at the note height
        ShieldedSyncCoordinator(session, [vk]).sync(start_height=heights[-1], required_height=heights[-1])
        assert session.shielded.balance(vk, session.native_token) == 30

    def test_required_height_not_reached(self, chain_with_notes, ledger, spending_key):
        session, _ = chain_with_notes
        with pytest.raises(SyncIncompleteError) as exc_info:
            ShieldedSyncCoordinator(session, [spending_key.viewing_key()]).sync(required_height=ledger.height + 5)
        assert exc_info.value.checkpoint == ledger.height
        assert exc_info.value.required_height == ledger.height + 5

    def test_cancelled_before_start(self, chain_with_notes, spending_key):
        session, heights = chain_with_notes
        shutdown = threading.Event()
        shutdown.set()
        with pytest.raises(SyncIncompleteError):
            ShieldedSyncCoordinator(session, [spending_key.viewing_key()], shutdown=shutdown).sync(
                required_height=heights[0]
            )
        assert session.shielded.checkpoint is None
        assert session.shielded.notes == {}

    def test_cancel_between_batches_keeps_full_batches(self, chain_with_notes, spending_key):
        session, _ = chain_with_notes
        shutdown = threading.Event()
        fetch = session.transport.fetch_blocks

        def fetch_then_interrupt(start, end):
            blocks = fetch(start, end)
            shutdown.set()
            return blocks

        session.transport.fetch_blocks = fetch_then_interrupt
        coordinator = ShieldedSyncCoordinator(
            session, [spending_key.viewing_key()], batch_size=10, workers=1, shutdown=shutdown
        )
        with pytest.raises(SyncIncompleteError) as exc_info:
            coordinator.sync()
        assert session.shielded.checkpoint == 10
        assert exc_info.value.checkpoint == 10

    def test_fetch_error_propagates_and_keeps_checkpoint(self, chain_with_notes, spending_key):
        session, _ = chain_with_notes
        fetch = session.transport.fetch_blocks

        def failing(start, end):
            if start > 1:
                raise TransportError("connection reset")
            return fetch(start, end)

        session.transport.fetch_blocks = failing
        with pytest.raises(TransportError):
            ShieldedSyncCoordinator(session, [spending_key.viewing_key()], batch_size=10, workers=1).sync()
        assert session.shielded.checkpoint == 10

    def test_fresh_state_starts_at_birthday(self, chain_with_notes, ledger, spending_key):
        session, heights = chain_with_notes
        vk = spending_key.viewing_key()
        requested = []
        fetch = session.transport.fetch_blocks
        session.transport.fetch_blocks = lambda start, end: requested.append(start) or fetch(start, end)

        ShieldedSyncCoordinator(session, [vk], workers=1).sync(
            start_height=heights[-1], required_height=heights[-1]
        )
        assert min(requested) == heights[-1]
        assert session.shielded.balance(vk, session.native_token) == 30
        assert session.shielded.checkpoint == ledger.height

    def test_skipped_blocks_are_not_marked_scanned(self, chain_with_notes, spending_key):
        session, _ = chain_with_notes
        fetch = session.transport.fetch_blocks

        def fetch_with_gap(start, end):
            return [b for b in fetch(start, end) if b.height != 14]

        session.transport.fetch_blocks = fetch_with_gap
        with pytest.raises(SyncIncompleteError, match="skipped blocks") as exc_info:
            ShieldedSyncCoordinator(session, [spending_key.viewing_key()], batch_size=10, workers=2).sync()
        assert session.shielded.checkpoint == 13
        assert exc_info.value.checkpoint == 13

    def test_truncated_first_range(self, chain_with_notes, spending_key):
        session, _ = chain_with_notes
        session.transport.fetch_blocks = lambda start, end: []
        with pytest.raises(SyncIncompleteError):
            ShieldedSyncCoordinator(session, [spending_key.viewing_key()]).sync()
        assert session.shielded.checkpoint is None

    def test_persists_checkpoint(self, chain_with_notes, ledger, spending_key, tmp_path):
        session, _ = chain_with_notes
        session.shielded = ShieldedContext(tmp_path)
        vk = spending_key.viewing_key()
        ShieldedSyncCoordinator(session, [vk]).sync()

        reloaded = ShieldedContext.from_dir(tmp_path)
        assert reloaded.checkpoint == ledger.height
        assert reloaded.balance(vk, session.native_token) == 60

    def test_invalid_pool_size(self, session, spending_key):
        with pytest.raises(ValueError):
            ShieldedSyncCoordinator(session, [spending_key.viewing_key()], workers=0)


class TestOrderingInvariant:
    """A note created at height H is spendable only once the checkpoint reaches H."""

    def test_unshield_needs_sync_past_creation(self, revealed_session, ledger, note_builder, spending_key):
        session = revealed_session
        vk = spending_key.viewing_key()
        ledger.advance(3)
        height = shield(session, note_builder, spending_key, 100)
        intent = TransferIntent(source="shielded", target=TEST_SOURCE_ADDRESS, token=session.native_token, amount=100)
        builder = UnshieldingTransferBuilder(session, note_builder)

        ShieldedSyncCoordinator(session, [vk]).sync(end_height=height - 1)
        assert session.shielded.checkpoint == height - 1
        with pytest.raises(BuildError, match="Insufficient visible shielded balance"):
            builder.build(spending_key, intent, tx_args())

        ShieldedSyncCoordinator(session, [vk]).sync(required_height=height)
        assert session.shielded.checkpoint >= height
        built = builder.build(spending_key, intent, tx_args())
        assert execute_tx(session, built).accepted is True


def test_shutdown_signal_sets_event():
    previous = signal.getsignal(signal.SIGTERM)
    with shutdown_signal() as event:
        assert not event.is_set()
        os.kill(os.getpid(), signal.SIGTERM)
        assert event.wait(timeout=5)
    assert signal.getsignal(signal.SIGTERM) is previous
