"""Resolve an external identity to a user without blocking the caller.

Authorization decisions call :func:`lookup_user_by_auth_id`. A store that is
slow or failing yields ``None``, the same answer as an unknown identity, so
the caller denies access instead of hanging.
"""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError

from .db import Database
from .db.repository import User
from .logging import get_logger

logger = get_logger(__name__)

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="identity-lookup")

DEFAULT_LOOKUP_TIMEOUT = 5.0


def lookup_user_by_auth_id(
    db: Database,
    auth_user_id: str | None,
    timeout: float = DEFAULT_LOOKUP_TIMEOUT,
) -> User | None:
    """Fetch the user for ``auth_user_id``, waiting at most ``timeout`` seconds."""
    auth_user_id = (auth_user_id or "").strip()
    if not auth_user_id:
        return None

    future = _executor.submit(db.get_user_by_auth_id, auth_user_id)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        future.cancel()
        logger.warning("identity_lookup_timeout", auth_user_id=auth_user_id, timeout=timeout)
    except Exception as e:
        logger.warning("identity_lookup_failed", auth_user_id=auth_user_id, error=str(e))
    return None
