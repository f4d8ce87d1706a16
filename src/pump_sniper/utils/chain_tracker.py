import asyncio
from logging import Logger
from typing import Optional, Protocol
import aiohttp
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solders.hash import Hash

BLOCKHASH_REFRESH_SEC = 0.5
PRICE_REFRESH_SEC = 60
PRICE_TIMEOUT_SEC = 5
COINGECKO_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price?ids=solana&vs_currencies=usd"


class BlockhashProvider(Protocol):
    async def get_latest_blockhash(self) -> Hash:
        ...


class ChainTracker:
    """Keeps a recent blockhash and the SOL/USD price warm in the background"""

    def __init__(self, client: AsyncClient, session: aiohttp.ClientSession, logger: Logger):
        self.client = client
        self.session = session
        self.logger = logger
        self.latest_blockhash: Optional[Hash] = None
        self.sol_price_usd: Optional[float] = None
        self._tasks = []

    async def start(self):
        self.logger.info("Starting chain tracking (blockhash, SOL price)")
        await self.refresh_blockhash()
        await self.refresh_sol_price()
        self._tasks = [
            asyncio.create_task(self._run_every(BLOCKHASH_REFRESH_SEC, self.refresh_blockhash)),
            asyncio.create_task(self._run_every(PRICE_REFRESH_SEC, self.refresh_sol_price)),
        ]

    async def stop(self):
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def _run_every(self, interval: float, refresh):
        while True:
            await asyncio.sleep(interval)
            await refresh()

    async def refresh_blockhash(self):
        try:
            response = await self.client.get_latest_blockhash(commitment=Confirmed)
            blockhash = response.value.blockhash
            if blockhash != self.latest_blockhash:
                self.latest_blockhash = blockhash
                self.logger.debug(f"Updated latest blockhash: {blockhash}")
        except Exception as e:
            self.logger.error(f"Failed to update blockhash: {str(e)}")

    async def refresh_sol_price(self):
        try:
            async with self.session.get(
                COINGECKO_PRICE_URL,
                timeout=aiohttp.ClientTimeout(total=PRICE_TIMEOUT_SEC)
            ) as resp:
                data = await resp.json(content_type=None)
            price = (data.get("solana") or {}).get("usd")
            if isinstance(price, (int, float)):
                self.sol_price_usd = float(price)
                self.logger.info(f"Updated SOL/USD price: {self.sol_price_usd}")
            else:
                self.logger.warning(f"Could not extract SOL price from response: {data}")
        except Exception as e:
            self.logger.error(f"Failed to update SOL price: {str(e)}")

    def get_sol_price(self) -> Optional[float]:
        return self.sol_price_usd

    async def get_latest_blockhash(self) -> Hash:
        """Cached blockhash, or a direct RPC read if none has been fetched yet"""
        if self.latest_blockhash is not None:
            return self.latest_blockhash
        response = await self.client.get_latest_blockhash(commitment=Confirmed)
        self.latest_blockhash = response.value.blockhash
        return self.latest_blockhash
