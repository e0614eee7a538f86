"""
ledger.py - JSON-RPC client for the external ledger.

Two calls only:
- eth_getTransactionReceipt: confirms a ledger reference exists
- net_version: connectivity probe

The client is shared by the stream worker and the API process; httpx.Client
is safe for concurrent use.
"""

import logging
import threading
from functools import lru_cache
from typing import Any

import httpx

from ledger_history.config import settings

logger = logging.getLogger(__name__)


class LedgerRPCError(Exception):
    """Transport failure or JSON-RPC error response."""

    def __init__(self, message: str, rpc_code: int | None = None):
        self.rpc_code = rpc_code
        super().__init__(message)


class LedgerClient:
    def __init__(
        self,
        rpc_url: str,
        timeout: float = 30.0,
        http_client: httpx.Client | None = None,
    ):
        self.rpc_url = rpc_url
        self.http_client = http_client or httpx.Client(
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )
        self._request_id = 0
        self._id_lock = threading.Lock()

    def _next_id(self) -> int:
        with self._id_lock:
            self._request_id += 1
            return self._request_id

    def _call(self, method: str, params: list[Any]) -> Any:
        body = {
            "jsonrpc": "2.0",
            "id": self._next_id(),
            "method": method,
            "params": params,
        }
        try:
            response = self.http_client.post(self.rpc_url, json=body)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            raise LedgerRPCError(f"{method} timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            raise LedgerRPCError(
                f"{method} failed with HTTP {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise LedgerRPCError(f"{method} failed: {e}") from e

        if not isinstance(data, dict):
            raise LedgerRPCError(f"{method} returned a malformed response")

        error = data.get("error")
        if error:
            if not isinstance(error, dict):
                raise LedgerRPCError(f"{method} returned a malformed error: {error!r}")
            raise LedgerRPCError(
                f"{method} returned error: {error.get('message', error)}",
                rpc_code=error.get("code"),
            )
        return data.get("result")

    def get_transaction_receipt(self, reference: str) -> dict[str, Any] | None:
        """Receipt for ``reference``, or None when the ledger has no such transaction."""
        return self._call("eth_getTransactionReceipt", [reference])

    def get_network_id(self) -> str:
        return str(self._call("net_version", []))

    def close(self) -> None:
        self.http_client.close()


@lru_cache(maxsize=1)
def get_ledger_client() -> LedgerClient:
    """Singleton ledger client built from settings."""
    client = LedgerClient(settings.LEDGER_RPC_URL, timeout=settings.LEDGER_TIMEOUT_SECONDS)
    logger.info("Ledger client configured for %s", settings.LEDGER_RPC_URL)
    return client
