import hashlib
import re
import secrets
from email_validator import validate_email, EmailNotValidError
from passlib.context import CryptContext
from inbola_auth.auth.errors import InvalidRequest
from inbola_auth.config.settings import config_settings

PASS_HASH_SCHEME = config_settings.PASS_HASH_SCHEME
PASS_HASH_ROUNDS = config_settings.PASS_HASH_ROUNDS
TOKEN_HASH_ALGO = config_settings.TOKEN_HASH_ALGO
PHONE_COUNTRY_PREFIX = config_settings.PHONE_COUNTRY_PREFIX

SPECIALS = set("!@#$%^&*()-_=+[]{};:'\",.<>/?\\|`~")
PHONE_RE = re.compile(r"^\+\d{9,15}$")
# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_BYTES = 72


def make_password_context(scheme: str = PASS_HASH_SCHEME, rounds: int = PASS_HASH_ROUNDS) -> CryptContext:
    return CryptContext(schemes=[scheme], deprecated="auto", **{f"{scheme}__rounds": rounds})

pwd_context = make_password_context()

def hash_password(plain_password: str, context: CryptContext = pwd_context) -> str:
    return context.hash(plain_password)


def validate_password(password: str, min_length: int = 8) -> tuple[bool, str]:
    pw = password.strip()
    if len(pw) < min_length:
        return False, f"Password must be at least {min_length} characters long"
    if len(password.encode()) > MAX_PASSWORD_BYTES:
        return False, f"Password must be at most {MAX_PASSWORD_BYTES} bytes long"
    if not any(c.islower() for c in pw):
        return False, "Password must include at least one lowercase letter"
    if not any(c.isupper() for c in pw):
        return False, "Password must include at least one uppercase letter"
    if not any(c.isdigit() for c in pw):
        return False, "Password must include at least one digit"
    if not any(c in SPECIALS for c in pw):
        return False, "Password must include at least one special character"
    return True, "OK"


def normalize_phone(phone: str, prefix: str = PHONE_COUNTRY_PREFIX) -> str:
    """Normalize to E.164 ("+998 90 123-45-67" -> "+998901234567")."""
    cleaned = re.sub(r"[\s\-()]", "", phone or "")
    if cleaned and not cleaned.startswith("+"):
        cleaned = "+" + cleaned
    if not PHONE_RE.match(cleaned):
        raise InvalidRequest("Phone number must be in international format", reason="invalid_phone")
    if prefix and not cleaned.startswith(prefix):
        raise InvalidRequest(f"Phone number must start with {prefix}", reason="invalid_phone")
    if prefix == "+998" and len(cleaned) != 13:
        raise InvalidRequest("Phone number must have 9 digits after +998", reason="invalid_phone")
    return cleaned


def normalize_email_address(email: str) -> str:
    try:
        v = validate_email(email, check_deliverability=False)
        return v.normalized.lower()
    except EmailNotValidError as e:
        raise InvalidRequest(f"Invalid email: {e}", reason="invalid_email")


def normalize_identifier(identifier: str, prefix: str = PHONE_COUNTRY_PREFIX) -> str:
    """Password login identifiers are either an email or a phone number."""
    identifier = (identifier or "").strip()
    if "@" in identifier:
        return normalize_email_address(identifier)
    return normalize_phone(identifier, prefix)


def generate_plain_token(nbytes: int = 48) -> str:
    return secrets.token_urlsafe(nbytes)

def make_refresh_plain() -> str:
    return generate_plain_token(48)

def hash_token(plain:str)->str:
    hash_func=getattr(hashlib,TOKEN_HASH_ALGO)
    return hash_func(plain.encode()).hexdigest()

def generate_otp_code(length: int) -> str:
    # every value in [0, 10**length) is valid, leading zeros included
    return f"{secrets.randbelow(10 ** length):0{length}d}"
