"""Multi-credential upstream client.

Upstream providers rate-limit per API key. The client holds an ordered key
list and a `current` index; each call starts at `current` and walks the
list on rate-limit failures:

    attempt 0 -> key[current], attempt 1 -> key[current + 1], ...

A success moves `current` to the key that worked. Errors that are not
rate limits propagate immediately. The index lives on the instance; one
client per agent role.
"""

import logging
import re
from typing import Callable, Optional, TypeVar

from src.errors import AllCredentialsExhausted
from src.llm.backends import ToolCallingBackend
from src.llm.factory import get_backend

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_STATUS_CODES = {429, 503}
RATE_LIMIT_MESSAGE = re.compile(r"rate limit|quota|429|resource.exhausted", re.IGNORECASE)


def _status_codes(error: BaseException) -> list[int]:
    codes = []
    for attr in ("status_code", "status", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            codes.append(value)
    response = getattr(error, "response", None)
    if response is not None:
        value = getattr(response, "status_code", None) or getattr(response, "status", None)
        if isinstance(value, int):
            codes.append(value)
    return codes


def is_rate_limit_error(error: BaseException) -> bool:
    """True if error (or its cause) signals a rate limit or overload."""
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if any(code in RATE_LIMIT_STATUS_CODES for code in _status_codes(current)):
            return True
        if RATE_LIMIT_MESSAGE.search(str(current)):
            return True
        current = current.__cause__
    return False


class MultiKeyUpstreamClient:
    """Runs tasks against an upstream model, rotating keys on rate limits.

    Usage:
        client = MultiKeyUpstreamClient(config.api_keys, "gemini-2.5-flash")
        turn = client.run(lambda backend: backend.generate(...), label="proposer")
    """

    def __init__(
        self,
        api_keys: list[str],
        model_id: str,
        backend_factory: Callable[[str, str], ToolCallingBackend] = get_backend,
    ):
        if not api_keys:
            raise ValueError("MultiKeyUpstreamClient requires at least one API key")
        self.api_keys = list(api_keys)
        self.model_id = model_id
        self.current = 0
        self._backend_factory = backend_factory
        self._backends: dict[int, ToolCallingBackend] = {}

    def _backend_for(self, key_index: int) -> ToolCallingBackend:
        if key_index not in self._backends:
            self._backends[key_index] = self._backend_factory(self.model_id, self.api_keys[key_index])
        return self._backends[key_index]

    def run(self, task: Callable[[ToolCallingBackend], T], label: str = "") -> T:
        """Run task with a backend, rotating through keys on rate limits.

        Raises:
            AllCredentialsExhausted: If every key was rate limited
        """
        total = len(self.api_keys)
        last_error: Optional[BaseException] = None

        for attempt in range(total):
            key_index = (self.current + attempt) % total
            try:
                result = task(self._backend_for(key_index))
            except Exception as e:
                if not is_rate_limit_error(e):
                    raise
                last_error = e
                logger.warning(
                    f"[{label}] Model rate limited on key #{key_index} "
                    f"(attempt {attempt + 1}/{total}, model {self.model_id}): {e}"
                )
                continue

            if key_index != self.current:
                logger.info(f"[{label}] Rotated upstream key #{self.current} -> #{key_index}")
            self.current = key_index
            return result

        raise AllCredentialsExhausted(total, last_error)
