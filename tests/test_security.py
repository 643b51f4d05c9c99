"""
Unit tests for tokens, OTP hashing, field encryption and masking
"""
import base64
import pytest

from jose import jwt

from app.core.encryption import FieldCipher
from app.core.exceptions import ErrorCode, ServiceError
from app.core.security import (
    TokenIssuer, generate_otp, hash_otp_code, verify_otp_code, mask_phone, mask_identifier
)

from conftest import TEST_PHONE


class TestTokenIssuer:
    """Tests for access token issue and validation"""

    @pytest.mark.unit
    def test_round_trip_returns_phone(self, token_issuer):
        token = token_issuer.issue(TEST_PHONE)
        assert token_issuer.validate(token) == TEST_PHONE

    @pytest.mark.unit
    def test_claims(self, token_issuer):
        """Token carries subject, phone, type and a bounded lifetime"""
        claims = jwt.get_unverified_claims(token_issuer.issue(TEST_PHONE))

        assert claims["sub"] == TEST_PHONE
        assert claims["phone"] == TEST_PHONE
        assert claims["type"] == "access"
        assert claims["exp"] - claims["iat"] == 900

    @pytest.mark.unit
    @pytest.mark.parametrize("token", ["", "not-a-jwt", "a.b.c"])
    def test_malformed_token(self, token_issuer, token):
        with pytest.raises(ServiceError) as exc_info:
            token_issuer.validate(token)
        assert exc_info.value.code == ErrorCode.UNAUTHORIZED

    @pytest.mark.unit
    def test_expired_token(self):
        issuer = TokenIssuer(secret_key="test-secret-key", expires_in_seconds=-10)

        with pytest.raises(ServiceError) as exc_info:
            issuer.validate(issuer.issue(TEST_PHONE))

        assert exc_info.value.code == ErrorCode.UNAUTHORIZED

    @pytest.mark.unit
    def test_foreign_signature(self, token_issuer):
        other = TokenIssuer(secret_key="another-secret-key")

        with pytest.raises(ServiceError):
            token_issuer.validate(other.issue(TEST_PHONE))

    @pytest.mark.unit
    def test_wrong_token_type(self, token_issuer):
        token = jwt.encode(
            {"sub": TEST_PHONE, "type": "refresh", "exp": 4102444800},
            "test-secret-key",
            algorithm="HS256"
        )

        with pytest.raises(ServiceError):
            token_issuer.validate(token)

    @pytest.mark.unit
    def test_token_without_expiry(self, token_issuer):
        token = jwt.encode({"sub": TEST_PHONE, "type": "access"}, "test-secret-key", algorithm="HS256")

        with pytest.raises(ServiceError):
            token_issuer.validate(token)

    @pytest.mark.unit
    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            TokenIssuer(secret_key="")


class TestOtpHashing:
    """Tests for OTP code generation and hashing"""

    @pytest.mark.unit
    def test_generated_code_shape(self):
        for _ in range(50):
            code = generate_otp(6)
            assert len(code) == 6
            assert code.isdigit()
            assert code[0] != "0"

    @pytest.mark.unit
    def test_hash_is_salted(self):
        """Same code, different hashes, both verify"""
        first = hash_otp_code("123456")
        second = hash_otp_code("123456")

        assert first != second
        assert verify_otp_code("123456", first)
        assert verify_otp_code("123456", second)
        assert not verify_otp_code("654321", first)

    @pytest.mark.unit
    def test_unparseable_hash_is_mismatch(self):
        assert verify_otp_code("123456", "not-a-bcrypt-hash") is False


class TestFieldCipher:
    """Tests for AES-GCM field encryption"""

    @pytest.mark.unit
    def test_decrypts_to_original(self, cipher):
        assert cipher.decrypt(cipher.encrypt("AZE1234567")) == "AZE1234567"

    @pytest.mark.unit
    def test_fresh_nonce_per_call(self, cipher):
        """Equal plaintexts never share a ciphertext"""
        assert cipher.encrypt("AZE1234567") != cipher.encrypt("AZE1234567")

    @pytest.mark.unit
    @pytest.mark.parametrize("value", [None, ""])
    def test_empty_values_pass_through(self, cipher, value):
        assert cipher.encrypt(value) == value
        assert cipher.decrypt(value) == value

    @pytest.mark.unit
    def test_unicode(self, cipher):
        address = "Bakı, Nərimanov rayonu"
        assert cipher.decrypt(cipher.encrypt(address)) == address

    @pytest.mark.unit
    def test_flipped_bit_fails(self, cipher):
        raw = bytearray(base64.b64decode(cipher.encrypt("AZE1234567")))
        raw[15] ^= 0x01
        tampered = base64.b64encode(bytes(raw)).decode("ascii")

        with pytest.raises(ServiceError) as exc_info:
            cipher.decrypt(tampered)

        assert exc_info.value.code == ErrorCode.DECRYPTION_ERROR
        assert exc_info.value.http_status == 500

    @pytest.mark.unit
    @pytest.mark.parametrize("value", ["%%%not-base64%%%", base64.b64encode(b"short").decode("ascii")])
    def test_malformed_input_fails(self, cipher, value):
        with pytest.raises(ServiceError) as exc_info:
            cipher.decrypt(value)
        assert exc_info.value.code == ErrorCode.DECRYPTION_ERROR

    @pytest.mark.unit
    def test_other_key_cannot_decrypt(self, cipher):
        other = FieldCipher(b"k" * 32)

        with pytest.raises(ServiceError):
            other.decrypt(cipher.encrypt("AZE1234567"))

    @pytest.mark.unit
    def test_key_length_enforced(self):
        with pytest.raises(ValueError):
            FieldCipher(b"too-short")
        with pytest.raises(ValueError):
            FieldCipher.from_base64("not base64!")


class TestMasking:
    """Tests for log and response masking helpers"""

    @pytest.mark.unit
    def test_mask_phone(self):
        assert mask_phone(TEST_PHONE) == "******4567"
        assert mask_phone(None) == "****"

    @pytest.mark.unit
    def test_mask_identifier(self):
        assert mask_identifier("AZE1234567") == "*******567"
        assert mask_identifier("AB") == "**"
        assert mask_identifier(None) is None
