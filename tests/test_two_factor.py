"""
Tests for TOTP helpers, backup codes and secret encryption.

Run with: pytest tests/test_two_factor.py -v
"""
from __future__ import annotations

import base64
import json

import pyotp
from cryptography.fernet import Fernet

from app import encryption
from app.auth import two_factor
from app.config import settings


class TestTotp:
    def test_current_code_verifies(self):
        secret = two_factor.generate_secret()
        assert two_factor.verify_token(pyotp.TOTP(secret).now(), secret) is True

    def test_wrong_code_fails(self):
        secret = two_factor.generate_secret()
        code = pyotp.TOTP(secret).now()
        wrong = f"{(int(code) + 500000) % 1000000:06d}"
        assert two_factor.verify_token(wrong, secret) is False

    def test_missing_inputs_fail_without_raising(self):
        assert two_factor.verify_token(None, "JBSWY3DPEHPK3PXP") is False
        assert two_factor.verify_token("123456", None) is False
        assert two_factor.verify_token("abcdef", "JBSWY3DPEHPK3PXP") is False

    def test_malformed_secret_fails_without_raising(self):
        assert two_factor.verify_token("123456", "not base32 !!") is False

    def test_provisioning_uri_names_issuer(self):
        uri = two_factor.provisioning_uri("someone@ecosystem40.com", "JBSWY3DPEHPK3PXP")
        assert uri.startswith("otpauth://totp/")
        assert "issuer=" in uri

    def test_qr_code_is_svg_data_url(self):
        url = two_factor.generate_qr_code("someone@ecosystem40.com", two_factor.generate_secret())
        prefix = "data:image/svg+xml;base64,"
        assert url.startswith(prefix)
        assert b"<svg" in base64.b64decode(url[len(prefix):])


class TestBackupCodes:
    def test_ten_codes_of_eight_chars(self):
        codes = two_factor.generate_backup_codes()
        assert len(codes) == 10
        assert all(len(c) == 8 and c.isalnum() and c.upper() == c for c in codes)

    def test_stored_form_holds_digests_only(self):
        codes = two_factor.generate_backup_codes()
        stored = json.loads(two_factor.hash_backup_codes(codes))
        assert len(stored) == 10
        assert not set(codes) & set(stored)

    def test_code_works_once(self):
        codes = two_factor.generate_backup_codes()
        stored = two_factor.hash_backup_codes(codes)
        matched, remaining = two_factor.consume_backup_code(stored, codes[0])
        assert matched is True
        assert len(json.loads(remaining)) == 9
        matched_again, _ = two_factor.consume_backup_code(remaining, codes[0])
        assert matched_again is False

    def test_lowercase_input_accepted(self):
        codes = two_factor.generate_backup_codes()
        stored = two_factor.hash_backup_codes(codes)
        matched, _ = two_factor.consume_backup_code(stored, codes[3].lower())
        assert matched is True

    def test_unknown_code_leaves_store_untouched(self):
        stored = two_factor.hash_backup_codes(two_factor.generate_backup_codes())
        matched, remaining = two_factor.consume_backup_code(stored, "ZZZZZZZZ")
        assert matched is False
        assert remaining == stored


class TestEncryption:
    def test_plain_text_without_key(self, monkeypatch):
        monkeypatch.setattr(settings, "encryption_key", "")
        encryption.reset_cipher()
        try:
            assert encryption.encrypt_value("JBSWY3DPEHPK3PXP") == "JBSWY3DPEHPK3PXP"
        finally:
            encryption.reset_cipher()

    def test_round_trip_with_key(self, monkeypatch):
        monkeypatch.setattr(settings, "encryption_key", Fernet.generate_key().decode())
        encryption.reset_cipher()
        try:
            token = encryption.encrypt_value("JBSWY3DPEHPK3PXP")
            assert token != "JBSWY3DPEHPK3PXP"
            assert encryption.decrypt_value(token) == "JBSWY3DPEHPK3PXP"
            # Values stored before the key was configured still read back
            assert encryption.decrypt_value("LEGACYPLAIN") == "LEGACYPLAIN"
        finally:
            monkeypatch.undo()
            encryption.reset_cipher()
