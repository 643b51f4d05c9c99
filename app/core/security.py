import logging
import secrets
import time
from typing import Optional, Dict, Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from app.core.config import settings
from app.core.exceptions import ErrorCode, ServiceError

logger = logging.getLogger(__name__)

# Salted, deliberately slow hashing for one-time codes
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS
)


def hash_otp_code(code: str) -> str:
    """Hash a one-time code for storage"""
    return pwd_context.hash(code)


def verify_otp_code(plain_code: str, hashed_code: str) -> bool:
    """Verify a one-time code against its stored hash"""
    try:
        return pwd_context.verify(plain_code, hashed_code)
    except ValueError:
        # Unparseable stored hash counts as a mismatch
        logger.warning("Stored OTP hash could not be parsed")
        return False


def generate_otp(length: Optional[int] = None, rng: Optional[secrets.SystemRandom] = None) -> str:
    """Generate a numeric OTP of ``length`` digits without a leading zero"""
    if length is None:
        length = settings.OTP_LENGTH
    if length < 1:
        raise ValueError("OTP length must be positive")
    rng = rng or secrets.SystemRandom()
    low = 10 ** (length - 1) if length > 1 else 0
    high = 10 ** length
    return str(rng.randrange(low, high))


class TokenIssuer:
    """Mints and validates stateless bearer tokens bound to a phone number.

    Tokens are HMAC-signed JWTs carrying the phone as subject, ``iat`` and
    ``exp``. There is no server-side record, so a token stays valid until
    it expires.
    """

    TOKEN_TYPE = "access"

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        expires_in_seconds: int = 900
    ):
        if not secret_key:
            raise ValueError("Token secret key must not be empty")
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._expires_in_seconds = expires_in_seconds

    @property
    def expires_in_seconds(self) -> int:
        return self._expires_in_seconds

    def issue(self, phone_number: str) -> str:
        """Create an access token for a verified phone number"""
        now = int(time.time())
        claims: Dict[str, Any] = {
            "sub": phone_number,
            "phone": phone_number,
            "type": self.TOKEN_TYPE,
            "iat": now,
            "exp": now + self._expires_in_seconds,
        }
        return jwt.encode(claims, self._secret_key, algorithm=self._algorithm)

    def validate(self, token: str) -> str:
        """Return the phone number bound to ``token``.

        Every failure (malformed, bad signature, expired, wrong type) raises
        the same UNAUTHORIZED error.
        """
        credentials_error = ServiceError(
            ErrorCode.UNAUTHORIZED,
            "Could not validate credentials"
        )
        if not token:
            raise credentials_error

        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={"require_exp": True, "require_sub": True}
            )
        except JWTError as e:
            logger.info(f"Rejected access token: {type(e).__name__}")
            raise credentials_error

        phone_number = payload.get("sub")
        if not phone_number or payload.get("type") != self.TOKEN_TYPE:
            logger.info("Rejected access token: unexpected claims")
            raise credentials_error

        return phone_number


def mask_phone(phone: Optional[str]) -> str:
    """Mask phone number showing only last 4 digits"""
    if not phone or len(phone) < 4:
        return "****"
    return f"******{phone[-4:]}"


def mask_identifier(value: Optional[str], visible: int = 3) -> Optional[str]:
    """Mask an identifier keeping only its last ``visible`` characters"""
    if value is None:
        return None
    if len(value) <= visible:
        return "*" * len(value)
    return "*" * (len(value) - visible) + value[-visible:]
