"""
Tests for the transaction builders.
"""
import time

import pytest

from shieldtx_sdk.exceptions import BuildError
from shieldtx_sdk.models import ShieldedBlock, TransferIntent, TxKind
from shieldtx_sdk.shielded.notes import SpendingKey
from shieldtx_sdk.tx.builders import (
    RevealPkBuilder, ShieldingTransferBuilder, TransparentTransferBuilder,
    UnshieldingTransferBuilder
)

from conftest import (
    TEST_SOURCE_ADDRESS, TEST_SOURCE_PK, TEST_TARGET_ADDRESS, execute_tx, tx_args
)


def transparent_intent(token, amount=100, **kwargs):
    return TransferIntent(
        source=TEST_SOURCE_ADDRESS, target=TEST_TARGET_ADDRESS, token=token, amount=amount, **kwargs
    )


class TestTransparentBuilder:
    """Tests for TransparentTransferBuilder."""

    def test_build(self, session):
        built = TransparentTransferBuilder(session).build(transparent_intent(session.native_token), tx_args())
        assert built.tx.kind == TxKind.TRANSPARENT_TRANSFER
        assert built.tx.chain_id == session.chain_id
        assert built.tx.payload["amount"] == {"amount": {"amount": 100, "denom": 6}, "validated": False}
        assert built.signing_data.public_keys == [TEST_SOURCE_PK]
        assert built.signing_data.fee_payer == TEST_SOURCE_PK
        assert built.epoch is None

    def test_unknown_token(self, session):
        with pytest.raises(BuildError, match="unknown token"):
            TransparentTransferBuilder(session).build(transparent_intent(TEST_TARGET_ADDRESS), tx_args())

    def test_memo_is_hex_encoded(self, session):
        built = TransparentTransferBuilder(session).build(
            transparent_intent(session.native_token), tx_args(memo="hello")
        )
        assert built.tx.memo == b"hello".hex()

    def test_expired_timestamp(self, session):
        with pytest.raises(BuildError, match="in the past"):
            TransparentTransferBuilder(session).build(
                transparent_intent(session.native_token), tx_args(expiration=int(time.time()) - 60)
            )

    def test_invalid_timestamp(self, session):
        with pytest.raises(BuildError, match="not a valid timestamp"):
            TransparentTransferBuilder(session).build(
                transparent_intent(session.native_token), tx_args(expiration=10**20)
            )

    def test_future_timestamp(self, session):
        expiration = int(time.time()) + 3600
        built = TransparentTransferBuilder(session).build(
            transparent_intent(session.native_token), tx_args(expiration=expiration)
        )
        assert built.tx.expiration == expiration


class TestRevealBuilder:

    def test_build(self, session):
        built = RevealPkBuilder(session).build(TEST_SOURCE_PK, tx_args())
        assert built.tx.payload == {"public_key": TEST_SOURCE_PK}
        assert built.signing_data.owner == TEST_SOURCE_ADDRESS


class TestShieldingBuilder:
    """Tests for ShieldingTransferBuilder."""

    def test_build(self, session, note_builder, spending_key):
        address = note_builder.derive_payment_address(spending_key.viewing_key())
        intent = TransferIntent(source=TEST_SOURCE_ADDRESS, target=address, token=session.native_token, amount=50)
        built = ShieldingTransferBuilder(session, note_builder).build(intent, tx_args())
        assert built.epoch == session.query_epoch()
        assert built.tx.epoch == built.epoch
        assert len(built.tx.payload["outputs"]) == 1

    def test_target_must_be_payment_address(self, session, note_builder):
        with pytest.raises(BuildError, match="shielded payment address"):
            ShieldingTransferBuilder(session, note_builder).build(
                transparent_intent(session.native_token), tx_args()
            )

    def test_zero_amount(self, session, note_builder, spending_key):
        address = note_builder.derive_payment_address(spending_key.viewing_key())
        intent = TransferIntent(source=TEST_SOURCE_ADDRESS, target=address, token=session.native_token, amount=0)
        with pytest.raises(BuildError, match="positive"):
            ShieldingTransferBuilder(session, note_builder).build(intent, tx_args())


class TestUnshieldingBuilder:
    """The unshielding builder only sees notes recorded by a sync."""

    def _shield(self, session, note_builder, spending_key, amount=100):
        address = note_builder.derive_payment_address(spending_key.viewing_key())
        intent = TransferIntent(source=TEST_SOURCE_ADDRESS, target=address, token=session.native_token, amount=amount)
        verdict = execute_tx(session, ShieldingTransferBuilder(session, note_builder).build(intent, tx_args()))
        return address, verdict.height

    def _unshield_intent(self, session, address, amount=100):
        return TransferIntent(source=address, target=TEST_SOURCE_ADDRESS, token=session.native_token, amount=amount)

    def test_insufficient_visible_balance_before_sync(self, revealed_session, note_builder, spending_key):
        session = revealed_session
        address, _ = self._shield(session, note_builder, spending_key)
        with pytest.raises(BuildError, match="Insufficient visible shielded balance"):
            UnshieldingTransferBuilder(session, note_builder).build(
                spending_key, self._unshield_intent(session, address), tx_args()
            )

    def test_validated_amount_after_sync(self, revealed_session, ledger, note_builder, spending_key):
        session = revealed_session
        address, height = self._shield(session, note_builder, spending_key)
        for block in ledger.fetch_blocks(1, height):
            session.shielded.apply_block(block, [spending_key.viewing_key()])
        session.shielded.checkpoint = height

        built = UnshieldingTransferBuilder(session, note_builder).build(
            spending_key, self._unshield_intent(session, address, 60), tx_args()
        )
        assert built.tx.payload["amount"]["validated"] is True
        assert len(built.tx.payload["spends"]) == 1
        # 40 units of change go back to a fresh address of the same key
        assert len(built.tx.payload["outputs"]) == 1
        assert built.epoch is not None

    def test_foreign_notes_are_invisible(self, revealed_session, ledger, note_builder, spending_key):
        session = revealed_session
        _, height = self._shield(session, note_builder, spending_key)
        other = SpendingKey.decode("6b" * 32)
        for block in ledger.fetch_blocks(1, height):
            session.shielded.apply_block(block, [other.viewing_key()])
        with pytest.raises(BuildError):
            UnshieldingTransferBuilder(session, note_builder).build(
                other, self._unshield_intent(session, "znam1other"), tx_args()
            )

    def test_empty_block_has_no_notes(self, session, spending_key):
        assert session.shielded.apply_block(ShieldedBlock(height=1), [spending_key.viewing_key()]) == 0
