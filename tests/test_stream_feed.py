import json

import pytest

from pump_sniper.data.stream_feed import (
    STREAM_MODE_LOGS,
    STREAM_MODE_TRANSACTION,
    StreamFeed,
    build_subscribe_message,
    parse_notification,
)

PROGRAM = "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P"


def test_transaction_subscription_filters_by_program():
    message = build_subscribe_message(STREAM_MODE_TRANSACTION, PROGRAM)

    assert message["method"] == "transactionSubscribe"
    tx_filter, options = message["params"]
    assert tx_filter == {"vote": False, "failed": False, "accountInclude": [PROGRAM]}
    assert options["commitment"] == "processed"


def test_logs_subscription_filters_by_program():
    message = build_subscribe_message(STREAM_MODE_LOGS, PROGRAM)

    assert message["method"] == "logsSubscribe"
    assert message["params"] == [{"mentions": [PROGRAM]}, {"commitment": "processed"}]


def test_unknown_mode_rejected():
    with pytest.raises(ValueError):
        build_subscribe_message("blocks", PROGRAM)


def test_parse_transaction_notification():
    message = {
        "jsonrpc": "2.0",
        "method": "transactionNotification",
        "params": {
            "subscription": 7,
            "result": {
                "signature": "sigA",
                "slot": 321,
                "transaction": {
                    "transaction": {"signatures": ["sigA"]},
                    "meta": {"err": None, "logMessages": ["Program log: Instruction: Create", "Program data: AAAA"]},
                    "blockTime": 1_700_000_123,
                }
            }
        }
    }

    record = parse_notification(message, STREAM_MODE_TRANSACTION, received_at=5.0)

    assert record.signature == "sigA"
    assert record.slot == 321
    assert record.block_time == 1_700_000_123.0
    assert record.has_meta is True
    assert record.err is None
    assert record.logs == ("Program log: Instruction: Create", "Program data: AAAA")


def test_missing_block_time_uses_receipt_time():
    message = {"params": {"result": {"transaction": {
        "transaction": {"signatures": ["sigB"]},
        "meta": {"err": {"InstructionError": [0, "Custom"]}, "logMessages": []},
    }}}}

    record = parse_notification(message, STREAM_MODE_TRANSACTION, received_at=42.5)

    assert record.signature == "sigB"
    assert record.block_time == 42.5
    assert record.err == {"InstructionError": [0, "Custom"]}


def test_missing_meta_is_flagged():
    message = {"params": {"result": {"signature": "sigC", "transaction": {}}}}
    record = parse_notification(message, STREAM_MODE_TRANSACTION, received_at=1.0)

    assert record.has_meta is False
    assert record.logs == ()


def test_parse_logs_notification():
    message = {"params": {"result": {
        "context": {"slot": 99},
        "value": {"signature": "sigD", "err": None, "logs": ["Program data: AAAA"]},
    }}}

    record = parse_notification(message, STREAM_MODE_LOGS, received_at=7.0)

    assert record.signature == "sigD"
    assert record.slot == 99
    assert record.block_time == 7.0
    assert record.logs == ("Program data: AAAA",)


@pytest.mark.parametrize("message", [
    {"jsonrpc": "2.0", "id": 1, "result": 12345},
    {"params": "nope"},
    {"params": {"result": None}},
])
def test_acks_and_junk_are_ignored(message):
    assert parse_notification(message, STREAM_MODE_TRANSACTION) is None


async def test_process_message_dispatches_records(logger):
    feed = StreamFeed("wss://example", PROGRAM, logger, STREAM_MODE_LOGS)
    received = []

    async def on_record(record):
        received.append(record)

    feed.add_callback(on_record)
    await feed.process_message(json.dumps({"params": {"result": {
        "context": {"slot": 1}, "value": {"signature": "s", "err": None, "logs": []}
    }}}))
    await feed.process_message("not json")

    assert [r.signature for r in received] == ["s"]
    assert feed.message_health["processing_errors"] == 1


def test_feed_rejects_unknown_mode(logger):
    with pytest.raises(ValueError):
        StreamFeed("wss://example", PROGRAM, logger, "blocks")
