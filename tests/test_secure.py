"""Tests for secret buffers and zeroization."""

import platform

import pytest

from pwvault.secure import Kek, SecretBytes, VaultKey, as_secret, wipe_bytearray, wipe_bytes

CPYTHON = platform.python_implementation() == "CPython"


class TestWipe:
    """Tests for the low-level wipe helpers."""

    def test_wipe_bytearray_zeroes_in_place(self):
        buf = bytearray(b"secret material")
        wipe_bytearray(buf)
        assert buf == bytearray(len(b"secret material"))

    @pytest.mark.skipif(not CPYTHON, reason="bytes wiping is CPython-only")
    def test_wipe_bytes_zeroes_storage(self):
        """Test that an immutable bytes object is overwritten."""
        data = bytes(bytearray(b"do-not-keep-me"))
        wipe_bytes(data)
        assert data == bytes(len(data))

    def test_wipe_bytes_skips_shared_objects(self):
        """Empty and single-byte objects are interned and must not be touched."""
        single = b"a"
        wipe_bytes(single)
        wipe_bytes(b"")
        assert single == b"a"


class TestSecretBytes:
    """Tests for SecretBytes ownership and scope."""

    def test_with_block_wipes_on_exit(self):
        with SecretBytes(b"hunter2") as secret:
            assert len(secret) == 7
        assert secret.wiped

    def test_with_block_wipes_on_exception(self):
        secret = SecretBytes(b"hunter2")
        with pytest.raises(RuntimeError):
            with secret:
                raise RuntimeError("boom")
        assert secret.wiped

    def test_wipe_is_idempotent(self):
        secret = SecretBytes(b"abc")
        secret.wipe()
        secret.wipe()
        assert secret.wiped

    def test_use_after_wipe_raises(self):
        secret = SecretBytes(b"abc")
        secret.wipe()
        with pytest.raises(ValueError):
            secret.decode()
        with pytest.raises(ValueError):
            with secret.reveal():
                pass

    def test_adopt_wipes_original_buffer(self):
        buf = bytearray(b"adopted")
        secret = SecretBytes.adopt(buf)
        secret.wipe()
        assert buf == bytearray(7)

    def test_copy_does_not_alias_input(self):
        buf = bytearray(b"original")
        secret = SecretBytes(buf)
        buf[:] = b"changed!"
        assert secret.decode() == "original"

    def test_from_text_utf8(self):
        with SecretBytes.from_text("pässword") as secret:
            assert secret.decode() == "pässword"
            assert len(secret) == len("pässword".encode("utf-8"))

    def test_reveal_yields_bytes_copy(self):
        with SecretBytes(b"abcdef") as secret:
            with secret.reveal() as raw:
                assert isinstance(raw, bytes)
                assert raw == b"abcdef"

    def test_view_is_read_only(self):
        with SecretBytes(b"abc") as secret:
            view = secret.view()
            with pytest.raises(TypeError):
                view[0] = 0
            view.release()

    def test_repr_is_redacted(self):
        secret = SecretBytes(b"hunter2")
        assert "hunter2" not in repr(secret)
        assert "hunter2" not in str(secret)
        assert "7 bytes" in repr(secret)

    def test_not_comparable_or_hashable(self):
        secret = SecretBytes(b"abc")
        assert (secret == SecretBytes(b"abc")) is False
        with pytest.raises(TypeError):
            hash(secret)

    def test_lower_and_contains(self):
        with SecretBytes(b"Call The BANK") as secret:
            with secret.lower() as folded:
                assert folded.contains(b"the bank")
                assert not folded.contains(b"THE")

    def test_key_types_are_distinct(self):
        assert issubclass(Kek, SecretBytes)
        assert issubclass(VaultKey, SecretBytes)
        assert not issubclass(Kek, VaultKey)
        assert not isinstance(VaultKey(bytes(32)), Kek)


class TestAsSecret:
    """Tests for as_secret conversion."""

    def test_passes_secret_through(self):
        secret = SecretBytes(b"x")
        assert as_secret(secret) is secret

    def test_copies_text(self):
        with as_secret("hello") as secret:
            assert secret.decode() == "hello"

    def test_copies_bytes(self):
        with as_secret(b"hello") as secret:
            assert secret.decode() == "hello"

    def test_rejects_other_types(self):
        with pytest.raises(TypeError):
            as_secret(12345)
