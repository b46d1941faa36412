"""Tests for KDF parameters, KEK derivation and Vault Key wrapping."""

import pytest

from pwvault import kdf
from pwvault.errors import AuthenticationFailure, CorruptFormat, UnsupportedVersion
from pwvault.kdf import (
    KdfParams,
    derive_kek,
    generate_salt,
    generate_vault_key,
    unwrap_vault_key,
    wrap_vault_key,
)
from pwvault.secure import Kek, SecretBytes, VaultKey

from conftest import FAST_PARAMS, STRONGER_PARAMS


class TestKdfParams:
    """Tests for KdfParams validation and ordering."""

    def test_default_preset(self):
        assert kdf.DEFAULT_PARAMS.memory_cost == 256 * 1024
        assert kdf.DEFAULT_PARAMS.time_cost == 3
        assert kdf.DEFAULT_PARAMS.parallelism == 1
        assert kdf.DEFAULT_PARAMS.memlimit == 256 * 1024 * 1024

    def test_presets_validate(self):
        for params in kdf.PRESETS.values():
            assert params.validate() is params

    def test_unknown_algorithm(self):
        params = KdfParams(99, FAST_PARAMS.memory_cost, FAST_PARAMS.time_cost, 1)
        with pytest.raises(UnsupportedVersion):
            params.validate()

    def test_unsupported_parallelism(self):
        params = KdfParams(kdf.ALG_ARGON2ID13, FAST_PARAMS.memory_cost, 1, 4)
        with pytest.raises(UnsupportedVersion):
            params.validate()

    def test_costs_out_of_range(self):
        with pytest.raises(CorruptFormat):
            KdfParams.argon2id(kdf.MEMORY_COST_MIN - 1, 1).validate()
        with pytest.raises(CorruptFormat):
            KdfParams.argon2id(kdf.MEMORY_COST_MIN, 0).validate()

    def test_is_weaker_than(self):
        assert FAST_PARAMS.is_weaker_than(STRONGER_PARAMS)
        assert not STRONGER_PARAMS.is_weaker_than(FAST_PARAMS)
        assert not FAST_PARAMS.is_weaker_than(FAST_PARAMS)

    def test_mixed_costs_count_as_weaker(self):
        """Lower memory with higher time is still a downgrade."""
        more_time = KdfParams.argon2id(100, 5)
        more_memory = KdfParams.argon2id(200, 2)
        assert more_time.is_weaker_than(more_memory)
        assert more_memory.is_weaker_than(more_time)
        assert more_time.strongest(more_memory) == KdfParams.argon2id(200, 5)

    def test_dict_round_trip(self):
        assert KdfParams.from_dict(STRONGER_PARAMS.to_dict()) == STRONGER_PARAMS

    def test_from_dict_rejects_garbage(self):
        with pytest.raises(CorruptFormat):
            KdfParams.from_dict({"algorithm": 1})
        with pytest.raises(CorruptFormat):
            KdfParams.from_dict({"algorithm": "x", "memory_cost": 1, "time_cost": 1, "parallelism": 1})


class TestDeriveKek:
    """Tests for derive_kek."""

    def test_deterministic(self):
        salt = generate_salt()
        with derive_kek("pw", salt, FAST_PARAMS) as one, derive_kek("pw", salt, FAST_PARAMS) as two:
            with one.reveal() as a, two.reveal() as b:
                assert a == b
            assert isinstance(one, Kek)
            assert len(one) == kdf.KEY_SIZE

    def test_salt_changes_output(self):
        with derive_kek("pw", generate_salt(), FAST_PARAMS) as one:
            with derive_kek("pw", generate_salt(), FAST_PARAMS) as two:
                with one.reveal() as a, two.reveal() as b:
                    assert a != b

    def test_params_change_output(self):
        salt = generate_salt()
        with derive_kek("pw", salt, FAST_PARAMS) as one:
            with derive_kek("pw", salt, STRONGER_PARAMS) as two:
                with one.reveal() as a, two.reveal() as b:
                    assert a != b

    def test_password_buffer_is_consumed(self):
        password = SecretBytes(b"master")
        derive_kek(password, generate_salt(), FAST_PARAMS).wipe()
        assert password.wiped

    def test_password_wiped_on_failure(self):
        password = SecretBytes(b"master")
        with pytest.raises(CorruptFormat):
            derive_kek(password, b"short salt", FAST_PARAMS)
        assert password.wiped

    def test_rejects_invalid_params(self):
        with pytest.raises(UnsupportedVersion):
            derive_kek("pw", generate_salt(), KdfParams(7, 8, 1, 1))


class TestWrapping:
    """Tests for wrap_vault_key / unwrap_vault_key."""

    def test_round_trip(self):
        salt = generate_salt()
        with generate_vault_key() as vault_key, derive_kek("pw", salt, FAST_PARAMS) as kek:
            wrapped, nonce = wrap_vault_key(kek, vault_key, b"header")
            assert len(wrapped) == kdf.WRAPPED_KEY_SIZE
            with unwrap_vault_key(kek, wrapped, nonce, b"header") as unwrapped:
                assert isinstance(unwrapped, VaultKey)
                with unwrapped.reveal() as a, vault_key.reveal() as b:
                    assert a == b

    def test_wrong_password_fails(self):
        salt = generate_salt()
        with generate_vault_key() as vault_key:
            with derive_kek("right", salt, FAST_PARAMS) as kek:
                wrapped, nonce = wrap_vault_key(kek, vault_key, b"header")
            with derive_kek("wrong", salt, FAST_PARAMS) as bad_kek:
                with pytest.raises(AuthenticationFailure):
                    unwrap_vault_key(bad_kek, wrapped, nonce, b"header")

    def test_header_binding(self):
        salt = generate_salt()
        with generate_vault_key() as vault_key, derive_kek("pw", salt, FAST_PARAMS) as kek:
            wrapped, nonce = wrap_vault_key(kek, vault_key, b"header")
            with pytest.raises(AuthenticationFailure):
                unwrap_vault_key(kek, wrapped, nonce, b"Header")

    def test_key_roles_are_not_interchangeable(self):
        """A Vault Key cannot be used to wrap, and a KEK cannot be wrapped."""
        salt = generate_salt()
        with generate_vault_key() as vault_key, derive_kek("pw", salt, FAST_PARAMS) as kek:
            with pytest.raises(TypeError):
                wrap_vault_key(vault_key, vault_key, b"")
            with pytest.raises(TypeError):
                wrap_vault_key(kek, kek, b"")

    def test_generated_keys_differ(self):
        with generate_vault_key() as one, generate_vault_key() as two:
            with one.reveal() as a, two.reveal() as b:
                assert a != b
