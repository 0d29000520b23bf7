"""Authenticated encryption of note text."""

import os

import pytest

from quicknotes.crypto.aead import decrypt_text, encrypt_text, generate_key, sealed_size
from quicknotes.utils.dataModels import EncryptedEnvelope
from quicknotes.utils.errors import AuthenticationFailed


@pytest.fixture
def key():
    return generate_key()


@pytest.mark.parametrize("text", ["SELECT * FROM users;", "", "ünïcödé ✓ 日本語", "x" * 10000])
def test_round_trip(key, text):
    env = encrypt_text(key, "v1", text)
    assert decrypt_text(key, env) == text


def test_envelope_shape(key):
    env = encrypt_text(key, "v42", "hello")
    assert len(env.nonce) == 12
    assert env.key_id == "v42"
    assert len(env.ciphertext) == sealed_size(len(b"hello"))


def test_nonce_is_fresh_per_call(key):
    nonces = {encrypt_text(key, "v1", "same text").nonce for _ in range(50)}
    assert len(nonces) == 50


def test_flipping_any_ciphertext_byte_fails(key):
    env = encrypt_text(key, "v1", "secret command")
    for i in range(len(env.ciphertext)):
        tampered = bytearray(env.ciphertext)
        tampered[i] ^= 0x01
        with pytest.raises(AuthenticationFailed):
            decrypt_text(key, EncryptedEnvelope(bytes(tampered), env.nonce, env.key_id))


def test_flipping_any_nonce_byte_fails(key):
    env = encrypt_text(key, "v1", "secret command")
    for i in range(len(env.nonce)):
        tampered = bytearray(env.nonce)
        tampered[i] ^= 0x80
        with pytest.raises(AuthenticationFailed):
            decrypt_text(key, EncryptedEnvelope(env.ciphertext, bytes(tampered), env.key_id))


def test_wrong_key_fails(key):
    env = encrypt_text(key, "v1", "hello")
    with pytest.raises(AuthenticationFailed):
        decrypt_text(generate_key(), env)


@pytest.mark.parametrize("size", [0, 11, 13, 16])
def test_bad_nonce_length_rejected_up_front(key, size):
    env = encrypt_text(key, "v1", "hello")
    with pytest.raises(AuthenticationFailed, match="nonce"):
        decrypt_text(key, EncryptedEnvelope(env.ciphertext, os.urandom(size), "v1"))


def test_truncated_ciphertext_fails(key):
    env = encrypt_text(key, "v1", "hello")
    with pytest.raises(AuthenticationFailed):
        decrypt_text(key, EncryptedEnvelope(env.ciphertext[:10], env.nonce, "v1"))
