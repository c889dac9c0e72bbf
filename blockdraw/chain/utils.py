import logging
from typing import Any, Optional

import requests

logger = logging.getLogger(__name__)


def open_session(api_key: Optional[str] = None) -> requests.Session:
    """Open a requests session for the block source.

    Parameters
    ----------
    api_key : Optional[str]
        TronGrid API key. When given it is attached to every request as the
        ``TRON-PRO-API-KEY`` header.

    Returns
    -------
    requests.Session
        Session with JSON headers preset.
    """
    session = requests.Session()
    session.headers.update(
        {"Accept": "application/json", "Content-Type": "application/json"}
    )
    if api_key:
        session.headers["TRON-PRO-API-KEY"] = api_key
        # Never log the key itself
        logger.debug("Block source session opened with API key")
    else:
        logger.debug("Block source session opened without API key")
    return session


def extract_block_number(block: Any) -> Optional[int]:
    """Return the height of a block payload, or ``None`` if it has none.

    Accepts the ``block_header.raw_data.number`` layout returned by
    ``/wallet/getnowblock`` as well as flat ``block_num`` / ``number`` keys.
    """
    if not isinstance(block, dict):
        return None
    header = block.get("block_header")
    if isinstance(header, dict):
        raw = header.get("raw_data")
        if isinstance(raw, dict) and isinstance(raw.get("number"), int):
            return raw["number"]
    for key in ("block_num", "number"):
        value = block.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def extract_block_id(block: Any) -> Optional[str]:
    """Return the block id (hash) of a block payload.

    Falls back to the header's ``txTrieRoot`` for payloads without ``blockID``.
    """
    if not isinstance(block, dict):
        return None
    block_id = block.get("blockID")
    if isinstance(block_id, str) and block_id:
        return block_id
    header = block.get("block_header")
    if isinstance(header, dict):
        raw = header.get("raw_data")
        if isinstance(raw, dict):
            root = raw.get("txTrieRoot")
            if isinstance(root, str) and root:
                return root
    return None
