"""
orderstream test publisher tests

Property of Uncompromising Sensors LLC.
"""

import os
import sys
import pytest

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from orderstream.core import MissingIdentifier, MalformedPayload
from orderstream.publisher import publishDocument, main


class TestPublishDocument:

    @pytest.mark.asyncio
    async def test_returns_order_id(self):
        orderId = await publishDocument(b'{"order_uid":"abc123"}', 'memory://pub', 'orders', 'order_uid')
        assert orderId == "abc123"

    @pytest.mark.asyncio
    async def test_rejected_before_connecting(self):
        """Invalid documents fail locally; the unreachable broker is never contacted"""
        with pytest.raises(MissingIdentifier):
            await publishDocument(b'{"no_id_field":true}', 'nats://127.0.0.1:1', 'orders', 'order_uid')
        with pytest.raises(MalformedPayload):
            await publishDocument(b'{"unterminated', 'nats://127.0.0.1:1', 'orders', 'order_uid')


class TestMain:

    @pytest.fixture(autouse=True)
    def isolatedEnv(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        for key in ('NATS_URL', 'NATS_SUBJECT', 'NATS_CLIENT_ID', 'DB_PATH', 'HTTP_ADDR'):
            monkeypatch.delenv(key, raising=False)

    def test_publish_file(self, tmp_path):
        path = tmp_path / 'model.json'
        path.write_bytes(b'{"order_uid":"abc123"}')
        assert main(['--file', str(path), '--uri', 'memory://cli']) == 0

    def test_missing_file(self, tmp_path):
        assert main(['--file', str(tmp_path / 'absent.json'), '--uri', 'memory://cli']) == 1

    def test_invalid_document(self, tmp_path):
        path = tmp_path / 'model.json'
        path.write_bytes(b'{"no_id_field":true}')
        assert main(['--file', str(path), '--uri', 'memory://cli']) == 1

    def test_invalid_config(self, tmp_path):
        path = tmp_path / 'bad.json'
        path.write_bytes(b'{"ingest": {"maxInFlight": 0}}')
        assert main(['--config', str(path), '--uri', 'memory://cli']) == 2
