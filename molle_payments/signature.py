import hashlib
import hmac


def sign(raw_body: bytes, shared_secret: str, digestmod=hashlib.sha256) -> str:
    return hmac.new(shared_secret.encode(), raw_body, digestmod).hexdigest()


def verify(raw_body: bytes, provided_signature, shared_secret, digestmod=hashlib.sha256) -> bool:
    """Check a webhook signature against the exact bytes that were received.

    Never raises: a missing signature or secret is simply not a match.
    """
    if not provided_signature or not shared_secret:
        return False
    if isinstance(raw_body, str):
        raw_body = raw_body.encode()
    expected = sign(raw_body, shared_secret, digestmod)
    return hmac.compare_digest(expected.encode(), provided_signature.strip().lower().encode())
