import base64
from logging import Logger
from typing import Optional
import base58
from construct import Struct, Bytes, PascalString, Int32ul, ConstructError
from pump_sniper.core.types import CreationEvent, TransactionRecord
from pump_sniper.execution.constants import CREATE_EVENT_DISCRIMINATOR

PROGRAM_DATA_PREFIX = "Program data: "

# Discriminator plus the three fixed-size keys; shorter payloads cannot be a create event
MIN_EVENT_LENGTH = 8 + 32 * 3

DEFAULT_TOKEN_NAME = "Unknown"
DEFAULT_TOKEN_SYMBOL = "UNK"

CREATE_EVENT_STRUCT = Struct(
    "discriminator" / Bytes(8),
    "name" / PascalString(Int32ul, "utf8"),
    "symbol" / PascalString(Int32ul, "utf8"),
    "uri" / PascalString(Int32ul, "utf8"),
    "mint" / Bytes(32),
    "bonding_curve" / Bytes(32),
    "user" / Bytes(32)
)


def encode_creation_event(
    name: str,
    symbol: str,
    uri: str,
    mint: bytes,
    bonding_curve: bytes,
    user: bytes
) -> bytes:
    """Serialize a create event in the program's log layout"""
    return CREATE_EVENT_STRUCT.build(dict(
        discriminator=CREATE_EVENT_DISCRIMINATOR,
        name=name,
        symbol=symbol,
        uri=uri,
        mint=mint,
        bonding_curve=bonding_curve,
        user=user
    ))


def _b58(data: bytes) -> str:
    return base58.b58encode(data).decode("ascii")


class CreationEventDecoder:
    """Finds pump.fun create events in a transaction's log lines"""

    def __init__(self, logger: Logger):
        self.logger = logger

    def decode(self, record: TransactionRecord) -> Optional[CreationEvent]:
        """Return the first create event in the record's logs, or None.

        Never raises on malformed input: other programs emit 'Program data'
        lines too, so undecodable lines are skipped.
        """
        if not record.has_meta or record.err is not None or not record.logs:
            return None

        for line in record.logs:
            if not line.startswith(PROGRAM_DATA_PREFIX):
                continue

            try:
                data = base64.b64decode(line[len(PROGRAM_DATA_PREFIX):])
            except ValueError as e:
                self.logger.debug(f"Skipping undecodable program data in {record.signature}: {str(e)}")
                continue

            if len(data) < MIN_EVENT_LENGTH:
                continue
            if data[:8] != CREATE_EVENT_DISCRIMINATOR:
                continue

            try:
                parsed = CREATE_EVENT_STRUCT.parse(data)
            except (ConstructError, ValueError) as e:
                self.logger.debug(f"Failed to parse create event in {record.signature}: {str(e)}")
                continue

            event = CreationEvent(
                signature=record.signature,
                block_time=record.block_time,
                creation_slot=record.slot,
                mint=_b58(parsed.mint),
                bonding_curve=_b58(parsed.bonding_curve),
                creator=_b58(parsed.user),
                name=parsed.name or DEFAULT_TOKEN_NAME,
                symbol=parsed.symbol or DEFAULT_TOKEN_SYMBOL,
                uri=parsed.uri or ""
            )
            self.logger.debug(f"Decoded create event for {event.symbol} ({event.mint}) in {record.signature}")
            return event

        return None
