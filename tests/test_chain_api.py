import json
import os
import unittest
from unittest.mock import patch

import requests

from blockdraw.chain.api import BlockSeed, BlockSource, TronClient
from blockdraw.chain.utils import extract_block_id, extract_block_number, open_session
from blockdraw.errors import TransientSourceError

NOW_BLOCK = {
    "blockID": "0000000003a1b2c3aa",
    "block_header": {"raw_data": {"number": 61000000, "txTrieRoot": "beef"}},
}


class DummyResponse:
    def __init__(self, json_data=None, content: bytes = b""):
        self._json = json_data
        if json_data is not None and not content:
            content = json.dumps(json_data).encode()
        self.content = content

    def json(self):
        return self._json

    def raise_for_status(self):
        pass


class DummySession:
    def __init__(self, response=None, error: Exception | None = None):
        self.response = response
        self.error = error
        self.calls = []
        self.closed = False

    def request(self, method, url, headers=None, params=None, json=None, timeout=None):
        self.calls.append(
            {
                "method": method,
                "url": url,
                "headers": headers,
                "params": params,
                "json": json,
                "timeout": timeout,
            }
        )
        if self.error is not None:
            raise self.error
        return self.response

    def close(self):
        self.closed = True


class TestTronClient(unittest.TestCase):
    @patch("blockdraw.chain.api.open_session")
    @patch("blockdraw.chain.api.load_dotenv")
    def test_base_url_from_environment(self, mock_load_dotenv, mock_open_session):
        mock_open_session.return_value = DummySession()
        with patch.dict(
            os.environ,
            {"TRON_GRID_API": "https://nile.example.org/", "TRON_API_KEY": "k"},
            clear=True,
        ):
            client = TronClient()
        self.assertEqual(client.base_url, "https://nile.example.org")
        mock_open_session.assert_called_once_with("k")

    @patch("blockdraw.chain.api.load_dotenv")
    def test_default_base_url(self, mock_load_dotenv):
        with patch.dict(os.environ, {}, clear=True):
            client = TronClient(session=DummySession())
        self.assertEqual(client.base_url, "https://api.trongrid.io")

    @patch("blockdraw.chain.api.load_dotenv")
    def test_endpoints(self, mock_load_dotenv):
        session = DummySession(DummyResponse(json_data=NOW_BLOCK))
        client = TronClient(base_url="https://host", session=session, timeout=5)

        self.assertEqual(client.get_now_block(), NOW_BLOCK)
        self.assertEqual(session.calls[0]["method"], "GET")
        self.assertEqual(session.calls[0]["url"], "https://host/wallet/getnowblock")
        self.assertEqual(session.calls[0]["timeout"], 5)

        client.get_block_by_number(42)
        self.assertEqual(session.calls[1]["method"], "POST")
        self.assertEqual(session.calls[1]["url"], "https://host/wallet/getblockbynum")
        self.assertEqual(session.calls[1]["json"], {"num": 42})

    @patch("blockdraw.chain.api.load_dotenv")
    def test_empty_body_returns_none(self, mock_load_dotenv):
        session = DummySession(DummyResponse(content=b""))
        client = TronClient(base_url="https://host", session=session)
        self.assertIsNone(client.get_now_block())

    def test_open_session_sets_api_key_header(self):
        session = open_session("secret-key")
        try:
            self.assertEqual(session.headers["TRON-PRO-API-KEY"], "secret-key")
            self.assertEqual(session.headers["Accept"], "application/json")
        finally:
            session.close()
        session = open_session(None)
        try:
            self.assertNotIn("TRON-PRO-API-KEY", session.headers)
        finally:
            session.close()


class TestBlockSource(unittest.TestCase):
    def _source(self, session):
        with patch("blockdraw.chain.api.load_dotenv"):
            return BlockSource(TronClient(base_url="https://host", session=session))

    def test_current_block_number(self):
        source = self._source(DummySession(DummyResponse(json_data=NOW_BLOCK)))
        self.assertEqual(source.current_block_number(), 61000000)

    def test_block_at(self):
        payload = {
            "blockID": "abc123",
            "block_header": {"raw_data": {"number": 100}},
        }
        source = self._source(DummySession(DummyResponse(json_data=payload)))
        self.assertEqual(source.block_at(100), BlockSeed(block_id="abc123", number=100))

    def test_unmined_block_is_transient(self):
        source = self._source(DummySession(DummyResponse(json_data={})))
        with self.assertRaises(TransientSourceError):
            source.block_at(100)
        with self.assertRaises(TransientSourceError):
            source.current_block_number()

    def test_mismatched_height_is_transient(self):
        payload = {"blockID": "abc", "block_header": {"raw_data": {"number": 99}}}
        source = self._source(DummySession(DummyResponse(json_data=payload)))
        with self.assertRaises(TransientSourceError):
            source.block_at(100)

    def test_network_errors_are_transient(self):
        session = DummySession(error=requests.ConnectionError("down"))
        source = self._source(session)
        with self.assertRaises(TransientSourceError):
            source.current_block_number()
        with self.assertRaises(TransientSourceError):
            source.block_at(5)

    def test_close_closes_session(self):
        session = DummySession()
        source = self._source(session)
        source.close()
        self.assertTrue(session.closed)


class TestExtractHelpers(unittest.TestCase):
    def test_block_number_layouts(self):
        self.assertEqual(extract_block_number(NOW_BLOCK), 61000000)
        self.assertEqual(extract_block_number({"block_num": 7}), 7)
        self.assertEqual(extract_block_number({"number": 8}), 8)
        self.assertIsNone(extract_block_number({"number": True}))
        self.assertIsNone(extract_block_number({}))
        self.assertIsNone(extract_block_number(None))

    def test_block_id_fallback(self):
        self.assertEqual(extract_block_id(NOW_BLOCK), "0000000003a1b2c3aa")
        no_id = {"block_header": {"raw_data": {"txTrieRoot": "beef"}}}
        self.assertEqual(extract_block_id(no_id), "beef")
        self.assertIsNone(extract_block_id({"blockID": ""}))
        self.assertIsNone(extract_block_id([]))


if __name__ == "__main__":
    unittest.main()
