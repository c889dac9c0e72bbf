import logging
import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol
from urllib.parse import urljoin

import requests
from dotenv import load_dotenv

from ..errors import TransientSourceError
from .utils import extract_block_id, extract_block_number, open_session

logger = logging.getLogger(__name__)

DEFAULT_TRON_GRID_API = "https://api.trongrid.io"


class TronClient:
    """Thin client for the TronGrid full-node HTTP API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 45,
        session: Optional[requests.Session] = None,
    ):
        load_dotenv()
        url = base_url or os.getenv("TRON_GRID_API") or DEFAULT_TRON_GRID_API
        self.base_url = url.rstrip("/")
        key = api_key if api_key is not None else os.getenv("TRON_API_KEY")
        self.session = session or open_session(key)
        self.timeout = timeout

    def close(self) -> None:
        self.session.close()

    # -------- core request --------
    def _request(
        self,
        method: str,
        path: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> Any:
        url = urljoin(self.base_url + "/", path.lstrip("/"))
        r = self.session.request(
            method=method.upper(),
            url=url,
            headers=headers,
            params=params,
            json=json,
            timeout=self.timeout,
        )
        r.raise_for_status()
        return r.json() if r.content else None

    # -------- API callers --------
    def get_now_block(self) -> Optional[dict]:
        """Return the latest block known to the node."""
        return self._request("GET", "/wallet/getnowblock")

    def get_block_by_number(self, num: int) -> Optional[dict]:
        """Return block ``num``; the node answers ``{}`` for unknown heights."""
        return self._request("POST", "/wallet/getblockbynum", json={"num": num})


@dataclass(frozen=True)
class BlockSeed:
    """A mined block whose id seeds a draw."""

    block_id: str
    number: int


class SeedSource(Protocol):
    def current_block_number(self) -> int: ...

    def block_at(self, number: int) -> BlockSeed: ...


class BlockSource:
    """Adapts :class:`TronClient` to the seed pipeline.

    Every failure, whether a network error, an HTTP error, malformed JSON or a
    block that is not mined yet, is reported as :class:`TransientSourceError`.
    """

    def __init__(self, client: TronClient) -> None:
        self._client = client

    def close(self) -> None:
        self._client.close()

    def current_block_number(self) -> int:
        try:
            block = self._client.get_now_block()
        except (requests.RequestException, ValueError) as exc:
            raise TransientSourceError(f"getnowblock failed: {exc}") from exc
        number = extract_block_number(block)
        if number is None:
            raise TransientSourceError("getnowblock returned no block number")
        return number

    def block_at(self, number: int) -> BlockSeed:
        try:
            block = self._client.get_block_by_number(number)
        except (requests.RequestException, ValueError) as exc:
            raise TransientSourceError(
                f"getblockbynum {number} failed: {exc}"
            ) from exc
        block_id = extract_block_id(block)
        if block_id is None:
            raise TransientSourceError(f"block {number} is not available yet")
        reported = extract_block_number(block)
        if reported is not None and reported != number:
            raise TransientSourceError(
                f"requested block {number} but the node returned {reported}"
            )
        return BlockSeed(block_id=block_id, number=number)
