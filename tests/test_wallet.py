"""
Tests for transparent keys, the wallet and its key store.
"""
import os
import stat

import pytest

from shieldtx_sdk.exceptions import ConfigError, KeyResolutionError
from shieldtx_sdk.wallet import KeyStore, Wallet
from shieldtx_sdk.wallet.crypto import (
    derive_address, generate_ed25519_keypair, is_transparent_address,
    load_secret_key, public_key_hex, secret_key_hex, sign_message, verify_signature
)

from conftest import TEST_SOURCE_ADDRESS, TEST_SOURCE_PK, TEST_SOURCE_SECRET


class TestCrypto:
    """Tests for key parsing, addresses and signatures."""

    def test_address_is_deterministic(self):
        assert derive_address(TEST_SOURCE_PK) == TEST_SOURCE_ADDRESS
        assert TEST_SOURCE_ADDRESS.startswith("tnam1")
        assert is_transparent_address(TEST_SOURCE_ADDRESS)

    def test_not_transparent_address(self):
        assert not is_transparent_address("znam1abc")
        assert not is_transparent_address("tnam1" + "0OIl")

    def test_secret_key_round_trip(self):
        key = load_secret_key("0x" + TEST_SOURCE_SECRET)
        assert secret_key_hex(key) == TEST_SOURCE_SECRET
        assert public_key_hex(key) == TEST_SOURCE_PK

    @pytest.mark.parametrize("value", ["zz", "abcd", ""])
    def test_invalid_secret_key(self, value):
        with pytest.raises(ConfigError):
            load_secret_key(value)

    def test_sign_and_verify(self):
        key, pk = generate_ed25519_keypair()
        signature = sign_message(key, b"message")
        assert verify_signature(pk, signature, b"message")
        assert not verify_signature(pk, signature, b"other message")
        assert not verify_signature(pk, "00" * 64, b"message")


class TestWallet:
    """Tests for Wallet."""

    def test_insert_and_find(self):
        wallet = Wallet()
        assert wallet.insert_keypair("source", TEST_SOURCE_SECRET) == TEST_SOURCE_PK
        assert wallet.find_address("source") == TEST_SOURCE_ADDRESS
        assert public_key_hex(wallet.find_key_by_pk(TEST_SOURCE_PK)) == TEST_SOURCE_PK

    def test_insert_overwrites_alias(self):
        wallet = Wallet()
        wallet.insert_keypair("source", TEST_SOURCE_SECRET)
        key, _ = generate_ed25519_keypair()
        pk = wallet.insert_keypair("source", secret_key_hex(key))
        assert wallet.find_public_key("source") == pk
        with pytest.raises(KeyResolutionError):
            wallet.find_key_by_pk(TEST_SOURCE_PK)

    def test_unknown_public_key(self):
        _, pk = generate_ed25519_keypair()
        with pytest.raises(KeyResolutionError) as exc_info:
            Wallet().find_key_by_pk(pk)
        assert exc_info.value.public_key == pk

    def test_save_and_load(self, tmp_path):
        wallet = Wallet.from_dir(tmp_path)
        wallet.insert_keypair("source", TEST_SOURCE_SECRET)
        wallet.insert_address("nam", "tnam1token")
        wallet.save()

        loaded = Wallet.from_dir(tmp_path)
        assert loaded.find_address("nam") == "tnam1token"
        assert loaded.find_public_key("source") == TEST_SOURCE_PK

    def test_in_memory_wallet_does_not_persist(self, tmp_path):
        wallet = Wallet()
        wallet.insert_keypair("source", TEST_SOURCE_SECRET)
        wallet.save()
        assert list(tmp_path.iterdir()) == []


class TestKeyStore:
    """Tests for KeyStore."""

    def test_read_missing_file(self, tmp_path):
        assert KeyStore(tmp_path).read() == {"keys": {}, "addresses": {}}

    def test_write_creates_private_file(self, tmp_path):
        store = KeyStore(tmp_path / "nested")
        store.write({"keys": {}, "addresses": {"a": "b"}})
        assert store.read()["addresses"] == {"a": "b"}
        if os.name == "posix":
            mode = stat.S_IMODE(os.stat(store.store_path).st_mode)
            assert mode == 0o600

    def test_corrupt_file(self, tmp_path):
        (tmp_path / "wallet.json").write_text("{not json")
        assert KeyStore(tmp_path).read() == {"keys": {}, "addresses": {}}
