from slowapi import Limiter
from starlette.requests import Request


def get_authorization_header(request: Request) -> str:
    """
    Extract authorization header for rate limiting.
    Anonymous callers share one bucket per client address.
    """
    auth = request.headers.get("Authorization", "")
    if auth:
        return auth
    return f"anonymous:{request.client.host if request.client else 'unknown'}"


limiter = Limiter(key_func=get_authorization_header)
