"""
JSON-RPC over HTTP transport for chain nodes.
"""
import itertools
import logging
from typing import Any, Callable, Dict, List, Optional, TypeVar

import requests
from pydantic import ValidationError
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..exceptions import TransportError, TransportTimeoutError, RpcResponseError
from ..models import ShieldedBlock, SignedTx, TxResponse
from ..utils import validate_rpc_url
from .base import ChainTransport

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _expect(kind: type) -> Callable[[Any], Any]:
    """Decoder accepting only results of exactly the given JSON type."""
    def decode(value: Any) -> Any:
        if type(value) is not kind:
            raise TypeError(f"expected {kind.__name__}, got {type(value).__name__}")
        return value
    return decode


class JsonRpcTransport(ChainTransport):
    """
    Chain node transport speaking JSON-RPC 2.0 over HTTP POST.

    Queries go through a session that retries on server errors and
    dropped connections. Submissions use a separate session without
    retries so a transaction is never broadcast twice by this layer.
    """

    def __init__(
        self,
        timeout: float = 30,
        retry_count: int = 3,
        submit_timeout: float = 120
    ):
        """
        Initialize the transport

        Args:
            timeout: Timeout for queries in seconds
            retry_count: Number of retries for queries
            submit_timeout: Timeout for broadcasting and committing a transaction
        """
        self.url: Optional[str] = None
        self.timeout = timeout
        self.retry_count = retry_count
        self.submit_timeout = submit_timeout
        self.session: Optional[requests.Session] = None
        self.submit_session: Optional[requests.Session] = None
        self._request_ids = itertools.count(1)

    def is_available(self) -> bool:
        return True

    def initialize(self, url: str) -> None:
        """
        Validate the node URL and set up HTTP sessions.

        Raises:
            ValueError: If the URL is invalid or uses insecure HTTP
        """
        validate_rpc_url(url)
        self.url = url

        self.session = requests.Session()
        retries = Retry(
            total=self.retry_count,
            backoff_factor=0.5,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["POST"],
            raise_on_status=False,
            connect=self.retry_count,
            read=self.retry_count,
            other=self.retry_count
        )
        self.session.mount("http://", HTTPAdapter(max_retries=retries))
        self.session.mount("https://", HTTPAdapter(max_retries=retries))

        self.submit_session = requests.Session()
        self.submit_session.mount("http://", HTTPAdapter(max_retries=0))
        self.submit_session.mount("https://", HTTPAdapter(max_retries=0))
        logger.debug(f"Initialized JSON-RPC transport for {url}")

    def _call(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        submit: bool = False,
        timeout: Optional[float] = None
    ) -> Any:
        if self.session is None or self.url is None:
            raise TransportError("JSON-RPC transport not initialized")

        session = self.submit_session if submit else self.session
        if timeout is None:
            timeout = self.submit_timeout if submit else self.timeout
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": method,
            "params": params or {},
        }
        try:
            response = session.post(self.url, json=payload, timeout=timeout)
            response.raise_for_status()
        except requests.Timeout as e:
            raise TransportTimeoutError(f"RPC call {method} timed out after {timeout}s") from e
        except requests.RequestException as e:
            raise TransportError(f"RPC call {method} failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON response to {method}: {e}") from e
        if not isinstance(body, dict):
            raise TransportError(f"Invalid JSON-RPC response to {method}: {body!r}")

        error = body.get("error")
        if error:
            if not isinstance(error, dict):
                raise RpcResponseError(f"RPC call {method} returned error: {error}")
            raise RpcResponseError(
                f"RPC call {method} returned error: {error.get('message', error)}",
                code=error.get("code"),
                data=error.get("data")
            )
        if "result" not in body:
            raise TransportError(f"Missing result in response to {method}: {body}")
        return body["result"]

    def _query(
        self,
        method: str,
        decode: Callable[[Any], T],
        params: Optional[Dict[str, Any]] = None,
        **kwargs: Any
    ) -> T:
        """
        Call method and decode its result.

        Raises:
            TransportError: If the call fails or the result cannot be decoded
        """
        result = self._call(method, params, **kwargs)
        try:
            return decode(result)
        except (TypeError, ValueError, ValidationError) as e:
            raise TransportError(f"Unexpected result for {method}: {result!r}") from e

    def query_chain_id(self) -> str:
        return self._query("chain_id", _expect(str))

    def latest_block_height(self) -> int:
        return self._query("latest_height", int)

    def query_native_token(self) -> str:
        return self._query("native_token", _expect(str))

    def query_denomination(self, token: str) -> Optional[int]:
        return self._query("denomination", lambda r: None if r is None else int(r), {"token": token})

    def query_balance(self, owner: str, token: str, height: Optional[int] = None) -> int:
        params: Dict[str, Any] = {"owner": owner, "token": token}
        if height is not None:
            params["height"] = height
        return self._query("balance", int, params)

    def is_public_key_revealed(self, address: str) -> bool:
        return self._query("pk_revealed", _expect(bool), {"address": address})

    def query_epoch(self) -> int:
        return self._query("epoch", int)

    def submit(self, signed_tx: SignedTx, timeout: Optional[float] = None) -> TxResponse:
        return self._query(
            "broadcast_tx_commit",
            TxResponse.model_validate,
            {"tx": signed_tx.model_dump(mode="json")},
            submit=True,
            timeout=timeout
        )

    def fetch_blocks(self, start: int, end: int) -> List[ShieldedBlock]:
        return self._query(
            "shielded_blocks",
            lambda blocks: [ShieldedBlock.model_validate(b) for b in blocks],
            {"start": start, "end": end}
        )

    def close(self) -> None:
        for session in (self.session, self.submit_session):
            if session is not None:
                session.close()
