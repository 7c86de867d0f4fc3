"""
Property-based tests for transaction identity and key derivation.

These tests verify that properties hold true across many random inputs.
"""
from hypothesis import given, settings, strategies as st

from shieldtx_sdk.models import TxKind, UnsignedTx
from shieldtx_sdk.utils import hash_canonical
from shieldtx_sdk.wallet.crypto import derive_address, is_transparent_address

from conftest import TEST_CHAIN_ID, TEST_SOURCE_PK

hex_key_strategy = st.binary(min_size=32, max_size=32).map(bytes.hex)
payload_strategy = st.dictionaries(
    keys=st.text(min_size=1, max_size=20),
    values=st.one_of(st.text(max_size=50), st.integers(0, 10**18), st.booleans()),
    max_size=8
)


def make_tx(payload, fee_payer=TEST_SOURCE_PK, gas_limit=1000, epoch=None, memo=None):
    return UnsignedTx(
        kind=TxKind.TRANSPARENT_TRANSFER,
        chain_id=TEST_CHAIN_ID,
        payload=payload,
        gas_limit=gas_limit,
        fee_payer=fee_payer,
        epoch=epoch,
        memo=memo,
    )


@given(payload=payload_strategy, fee_payer=hex_key_strategy, gas_limit=st.integers(1, 10**9))
@settings(max_examples=50)
def test_commitment_ignores_wrapper_fields(payload, fee_payer, gas_limit):
    """Re-wrapping an inner transaction never changes its commitment"""
    base = make_tx(payload)
    rewrapped = make_tx(payload, fee_payer=fee_payer, gas_limit=gas_limit, epoch=7)
    assert base.commitment == rewrapped.commitment


@given(payload=payload_strategy, fee_payer=hex_key_strategy)
@settings(max_examples=50)
def test_wrapper_hash_binds_fee_payer(payload, fee_payer):
    if fee_payer == TEST_SOURCE_PK:
        return
    assert make_tx(payload).wrapper_hash != make_tx(payload, fee_payer=fee_payer).wrapper_hash


@given(payload=payload_strategy, memo=st.text(min_size=1, max_size=30))
@settings(max_examples=50)
def test_memo_changes_commitment(payload, memo):
    assert make_tx(payload).commitment != make_tx(payload, memo=memo).commitment


@given(data=payload_strategy)
def test_canonical_hash_ignores_key_order(data):
    reordered = dict(reversed(list(data.items())))
    assert hash_canonical(data) == hash_canonical(reordered)


@given(public_key=hex_key_strategy)
@settings(max_examples=50)
def test_derived_addresses_are_transparent(public_key):
    address = derive_address(public_key)
    assert is_transparent_address(address)
    assert address == derive_address(public_key)
