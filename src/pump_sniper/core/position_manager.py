import asyncio
from logging import Logger
from typing import Awaitable, Callable, Optional
from .types import CreationEvent, Position, PositionState

BuyCallable = Callable[[Position], Awaitable[bool]]


class PositionManager:
    """Owns the single active position slot.

    Admission, buy and slot clearing all happen under one lock so that at
    most one position exists at a time. Events arriving while a position is
    active are discarded rather than queued.
    """

    def __init__(self, logger: Logger):
        self.logger = logger
        self._lock = asyncio.Lock()
        self._active: Optional[Position] = None
        self._shutdown = asyncio.Event()

    @property
    def active_position(self) -> Optional[Position]:
        return self._active

    @property
    def is_shutting_down(self) -> bool:
        return self._shutdown.is_set()

    def signal_shutdown(self) -> None:
        """Stop admitting new positions; in-flight work is left alone"""
        if not self._shutdown.is_set():
            self.logger.info("Position manager shutting down, new events will be ignored")
        self._shutdown.set()

    def is_active(self, position: Position) -> bool:
        return self._active is position

    async def handle_event(self, event: CreationEvent, buy: BuyCallable) -> Optional[Position]:
        """Try to open a position for a creation event.

        Returns the position if it was admitted (whatever the buy outcome),
        None if the event was dropped.
        """
        if self.is_shutting_down:
            self.logger.debug(f"Shutdown in progress, ignoring {event.mint}")
            return None

        async with self._lock:
            if self.is_shutting_down:
                return None
            if self._active is not None:
                self.logger.debug(
                    f"Position {self._active.mint} already active, discarding {event.mint}"
                )
                return None

            position = Position.from_event(event)
            position.transition_to(PositionState.BUYING)
            self._active = position
            self.logger.info(f"New position {position.token_symbol} ({position.mint}), buying")

            try:
                bought = await buy(position)
            except Exception as e:
                self.logger.error(f"Buy for {position.mint} raised: {str(e)}")
                if position.state == PositionState.BUYING:
                    position.buy_error = position.buy_error or str(e)
                    position.transition_to(PositionState.FAILED)
                bought = False

            if not bought:
                self._clear(position)
            return position

    def release(self, position: Position) -> bool:
        """Clear the slot if it still holds this position"""
        return self._clear(position)

    def _clear(self, position: Position) -> bool:
        if self._active is not position:
            return False
        self._active = None
        self.logger.info(f"Released position {position.mint} ({position.state.value})")
        return True
