"""Per-client request budget for the analyze route, keyed on the caller's address."""
from fastapi import Request

from slowapi import Limiter


def client_address(request: Request) -> str:
    """First X-Forwarded-For hop when a load balancer sits in front, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"


limiter = Limiter(key_func=client_address)
