"""Random token, hashing and PKCE helpers

Header tokens are stored as SHA-256 hex digests only. PKCE follows RFC 7636
with the S256 method.
"""
import base64
import hashlib
import hmac
import secrets


def generate_random_token(length: int) -> str:
    """Return a hex string built from `length` secure random bytes (2*length chars)"""
    return secrets.token_bytes(length).hex()


def hash_token(token: str) -> str:
    """SHA-256 hex digest of a token (64 chars)"""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def verify_token_hash(token: str, expected_hash: str) -> bool:
    """Constant-time check of a plaintext token against a stored hash"""
    if not expected_hash:
        return False
    return hmac.compare_digest(hash_token(token), expected_hash)


def generate_pkce_verifier() -> str:
    """64-character hex code verifier"""
    return generate_random_token(32)


def generate_pkce_challenge(verifier: str) -> str:
    """S256 code challenge: base64url(sha256(verifier)) without padding"""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
