import unittest
from unittest.mock import patch

from blockdraw.chain.api import BlockSource
from blockdraw.config import Settings
from blockdraw.lifecycle import DrawingController
from blockdraw.service import build_service


class TestBuildService(unittest.IsolatedAsyncioTestCase):
    @patch("blockdraw.chain.api.load_dotenv")
    async def test_wires_components_from_settings(self, mock_load_dotenv):
        settings = Settings(
            db_url="sqlite+pysqlite:///:memory:",
            tron_grid_api="https://nile.example.org",
            tron_api_key="k",
            seed_block_offset=4,
            source_timeout=3.0,
        )
        service = build_service(settings, create_tables=True)
        try:
            self.assertIsInstance(service.source, BlockSource)
            self.assertIsInstance(service.controller, DrawingController)
            self.assertEqual(service.source._client.base_url, "https://nile.example.org")
            self.assertEqual(service.source._client.timeout, 3.0)
            self.assertEqual(service.source._client.session.headers["TRON-PRO-API-KEY"], "k")
            self.assertEqual(service.controller.queue._offset, 4)

            await service.start()
            self.assertEqual(service.controller.list_drawings(), [])
        finally:
            await service.close()


if __name__ == "__main__":
    unittest.main()
