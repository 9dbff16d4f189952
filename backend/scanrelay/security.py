"""
ScanRelay Backend - Security Primitives
=======================================

What:  API-key minting and hashing, webhook signatures, pairing secrets and
       dashboard session tokens.
How:   hashlib/hmac/secrets for the secrets themselves, PyJWT for sessions.
Who:   Credential and pairing services, delivery pipeline, auth dependencies.

Formats:
    API key:        sk_live_<64 hex>        stored as sha256 hex, shown as first 12 chars
    Pairing token:  pair_<32 hex>
    Short code:     XXXX-XXXX               alphabet without I, O, 0, 1
    Signature:      hex HMAC-SHA256 of the exact request body
"""

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone

import jwt

from scanrelay.config import settings

API_KEY_PREFIX = "sk_live_"
KEY_DISPLAY_LENGTH = 12
PAIRING_TOKEN_PREFIX = "pair_"
SHORT_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
SIGNATURE_HEADER = "X-Webhook-Signature"


# --- API Keys ---

def generate_api_key() -> str:
    return API_KEY_PREFIX + secrets.token_hex(32)


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode()).hexdigest()


def key_prefix(raw_key: str) -> str:
    """Non-secret leading slice shown in listings, e.g. 'sk_live_1a2b'."""
    return raw_key[:KEY_DISPLAY_LENGTH]


# --- Webhook Signatures ---

def sign_payload(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, secret: str, signature: str) -> bool:
    return hmac.compare_digest(sign_payload(body, secret), signature)


# --- Pairing ---

def generate_pairing_token() -> str:
    return PAIRING_TOKEN_PREFIX + secrets.token_hex(16)


def generate_short_code() -> str:
    """Two groups of four characters a person can read off one screen and type on another."""
    chars = "".join(secrets.choice(SHORT_CODE_ALPHABET) for _ in range(8))
    return f"{chars[:4]}-{chars[4:]}"


def normalize_short_code(code: str) -> str:
    return code.strip().upper()


# --- Dashboard Sessions ---

def create_session_token(user_id: str, email: str, expires_minutes: int = 60 * 24) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    payload = {
        "sub": user_id,
        "email": email,
        "exp": expire,
        "type": "session",
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_session_token(token: str) -> dict:
    """Decode and validate a dashboard session token. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
