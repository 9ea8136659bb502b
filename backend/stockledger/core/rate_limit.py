"""Rate limiting for the stock ledger routes.

Authenticated callers are bucketed by token subject so that several
tablets behind one kitchen NAT do not share a budget.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from stockledger.core.config import settings
from stockledger.core.security import decode_access_token

READ_LIMIT = settings.rate_limit_reads
# Writes lock stock rows, keep them tighter than reads
WRITE_LIMIT = settings.rate_limit_writes


def get_user_or_ip(request: Request) -> str:
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        payload = decode_access_token(auth.split(" ", 1)[1])
        if payload and payload.get("sub"):
            return f"user:{payload['sub']}"
    return get_remote_address(request)


limiter = Limiter(key_func=get_user_or_ip, enabled=settings.rate_limit_enabled)
