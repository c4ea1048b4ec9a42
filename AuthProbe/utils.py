import hmac
import secrets
from urllib.parse import urlparse


def get_domain_from_url(url):
    parsed_url = urlparse(url)
    return parsed_url.netloc


def new_token(nbytes=32):
    return secrets.token_urlsafe(nbytes)


def tokens_match(expected, received):
    if not expected or not received:
        return False
    return hmac.compare_digest(str(expected).encode(), str(received).encode())
