import json
import asyncio
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import websockets
import websockets.exceptions
from logging import Logger
from pump_sniper.core.types import TransactionRecord

RECONNECT_DELAY_SEC = 5

STREAM_MODE_TRANSACTION = "transaction"
STREAM_MODE_LOGS = "logs"
STREAM_MODES = (STREAM_MODE_TRANSACTION, STREAM_MODE_LOGS)


def build_subscribe_message(mode: str, program_id: str) -> Dict[str, Any]:
    """JSON-RPC subscription filtered to transactions touching the program"""
    if mode == STREAM_MODE_TRANSACTION:
        return {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "transactionSubscribe",
            "params": [
                {"vote": False, "failed": False, "accountInclude": [program_id]},
                {
                    "commitment": "processed",
                    "encoding": "jsonParsed",
                    "transactionDetails": "full",
                    "maxSupportedTransactionVersion": 0
                }
            ]
        }
    if mode == STREAM_MODE_LOGS:
        return {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "logsSubscribe",
            "params": [
                {"mentions": [program_id]},
                {"commitment": "processed"}
            ]
        }
    raise ValueError(f"Unknown stream mode: {mode}")


def parse_notification(message: Dict[str, Any], mode: str, received_at: Optional[float] = None) -> Optional[TransactionRecord]:
    """Normalize a subscription notification into a TransactionRecord.

    Returns None for subscription acks and anything that is not a notification.
    Missing block times fall back to the receipt wall-clock time.
    """
    params = message.get("params")
    if not isinstance(params, dict):
        return None
    result = params.get("result")
    if not isinstance(result, dict):
        return None

    if received_at is None:
        received_at = time.time()

    if mode == STREAM_MODE_LOGS:
        value = result.get("value") or {}
        logs = value.get("logs")
        return TransactionRecord(
            signature=value.get("signature", ""),
            slot=(result.get("context") or {}).get("slot"),
            block_time=received_at,
            has_meta=logs is not None,
            err=value.get("err"),
            logs=tuple(logs or ())
        )

    tx = result.get("transaction") or {}
    meta = tx.get("meta")
    signature = result.get("signature")
    if not signature:
        signatures = (tx.get("transaction") or {}).get("signatures") or []
        signature = signatures[0] if signatures else ""
    block_time = result.get("blockTime") or tx.get("blockTime")

    return TransactionRecord(
        signature=signature,
        slot=result.get("slot"),
        block_time=float(block_time) if block_time else received_at,
        has_meta=meta is not None,
        err=meta.get("err") if meta else None,
        logs=tuple((meta or {}).get("logMessages") or ())
    )


class StreamFeed:
    def __init__(self, ws_url: str, program_id: str, logger: Logger, mode: str = STREAM_MODE_TRANSACTION):
        if mode not in STREAM_MODES:
            raise ValueError(f"Unknown stream mode: {mode}")
        self.ws_url = ws_url
        self.program_id = program_id
        self.mode = mode
        self.callbacks: List[Callable] = []
        self.ws = None
        self.logger = logger
        self._running = False

        self.message_health = {
            'last_message_time': None,
            'messages_received': 0,
            'processing_errors': 0,
            'reconnects': 0
        }

    def add_callback(self, callback: Callable):
        """Add an async callback receiving each TransactionRecord"""
        self.callbacks.append(callback)

    async def start(self):
        """Start the feed; runs until stop() is called"""
        self._running = True
        await self.connect()

    async def stop(self):
        self._running = False
        if self.ws:
            await self.ws.close()

    async def connect(self):
        while self._running:
            try:
                self.logger.info(f"Connecting to stream at {self.ws_url} (mode: {self.mode})")
                self.ws = await websockets.connect(self.ws_url)

                await self.ws.send(json.dumps(build_subscribe_message(self.mode, self.program_id)))
                self.logger.info(f"Subscribed to {self.program_id}")

                while True:
                    try:
                        msg = await self.ws.recv()
                    except websockets.exceptions.ConnectionClosed as e:
                        self.logger.warning(
                            f"Stream disconnected. Code: {e.code}, "
                            f"Last message: {self.message_health['last_message_time']}"
                        )
                        break
                    self.message_health['last_message_time'] = datetime.now()
                    self.message_health['messages_received'] += 1
                    await self.process_message(msg)

            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error(f"Stream connection error: {str(e)}")

            if not self._running:
                break
            self.message_health['reconnects'] += 1
            self.logger.info(f"Reconnecting stream in {RECONNECT_DELAY_SEC}s")
            await asyncio.sleep(RECONNECT_DELAY_SEC)

    async def process_message(self, msg: str):
        try:
            data = json.loads(msg)
            record = parse_notification(data, self.mode)
            if record is None:
                return
            for callback in self.callbacks:
                await callback(record)
        except Exception as e:
            self.message_health['processing_errors'] += 1
            self.logger.error(f"Error processing stream message: {str(e)}")
