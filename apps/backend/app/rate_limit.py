"""
IP-based rate limiting for job and agent creation endpoints.
"""
import os
from slowapi import Limiter
from slowapi.util import get_remote_address

RATE_LIMIT_CREATE = os.getenv("RATE_LIMIT_CREATE", "30/minute" if os.getenv("REVIEWHARVEST_ENV") == "dev" else "10/minute")

limiter = Limiter(key_func=get_remote_address)
