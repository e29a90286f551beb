"""Tests for the shop journal."""

import asyncio
import datetime
import glob
import os
from decimal import Decimal

from app.utils.log import Log, mask


def test_mask_hides_personal_data():
    assert mask("buyer@mail.in") == "buy***"
    assert mask("ab") == "***"
    assert mask(None) == ""


def test_gateway_secrets_are_redacted(tmp_path):
    log = Log(str(tmp_path))

    data = log.redact({"hash": "abc", "txnid": "BP1T2", "amount": Decimal("250.00"), "nested": [{"Signature": "s"}]})

    assert data == {"hash": "***", "txnid": "BP1T2", "amount": "250.00", "nested": [{"Signature": "***"}]}


def test_security_events_have_own_file(tmp_path):
    log = Log(str(tmp_path))

    async def scenario():
        await log.log_security("Подпись не совпала", {"gateway": "payu", "hash": "deadbeef"})
        await log.shutdown()

    asyncio.run(scenario())

    security_files = glob.glob(os.path.join(str(tmp_path), "*", "*", "*.security.log"))
    assert len(security_files) == 1
    with open(security_files[0], encoding="utf-8") as f:
        content = f.read()
    assert "SECURITY: Подпись не совпала" in content
    assert "deadbeef" not in content


def test_log_path_is_dated(tmp_path):
    log = Log(str(tmp_path))
    now = datetime.datetime(2025, 10, 4, 12, 0)

    assert log.build_log_path("order", now) == os.path.join(str(tmp_path), "2025", "10", "04.log")
    assert log.build_log_path("security", now).endswith(os.path.join("10", "04.security.log"))
