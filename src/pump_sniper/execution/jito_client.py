import base64
from logging import Logger
from typing import Any, Dict, List, Optional, Protocol
import aiohttp
from solders.transaction import VersionedTransaction
from .constants import MAX_BUNDLE_SIZE

REQUEST_TIMEOUT_SEC = 10


class BundleSubmissionError(Exception):
    """Raised when the block engine rejects or fails to accept a bundle"""

    def __init__(self, message: str, code: Optional[int] = None, details: Optional[Any] = None):
        self.message = message
        self.code = code
        self.details = details
        super().__init__(f"{message} (code: {code}, details: {details})")


class BundleSubmitter(Protocol):
    async def send_bundle(self, transactions: List[VersionedTransaction]) -> str:
        ...

    async def get_tip_accounts(self) -> List[str]:
        ...


class JitoBundleClient:
    """Jito block engine JSON-RPC client

    Usage:
        async with aiohttp.ClientSession() as session:
            jito = JitoBundleClient(session, "https://mainnet.block-engine.jito.wtf", logger)
            bundle_id = await jito.send_bundle([signed_tx])
    """

    def __init__(self, session: aiohttp.ClientSession, block_engine_url: str, logger: Logger):
        self.session = session
        self.block_engine_url = block_engine_url.rstrip("/")
        self.logger = logger

    async def _rpc(self, path: str, method: str, params: List[Any]) -> Any:
        url = f"{self.block_engine_url}{path}"
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": method,
            "params": params
        }

        try:
            async with self.session.post(
                url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SEC)
            ) as resp:
                data: Dict[str, Any] = await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise BundleSubmissionError(f"{method} request failed: {str(e)}") from e

        if data.get("error"):
            error = data["error"]
            if isinstance(error, dict):
                raise BundleSubmissionError(
                    error.get("message", "Unknown error"),
                    code=error.get("code"),
                    details=error.get("data")
                )
            raise BundleSubmissionError(str(error))

        if "result" not in data:
            raise BundleSubmissionError(f"Unexpected {method} response", details=data)
        return data["result"]

    async def send_bundle(self, transactions: List[VersionedTransaction]) -> str:
        """Submit signed transactions as one bundle and return the bundle id"""
        if not transactions:
            raise BundleSubmissionError("Bundle is empty")
        if len(transactions) > MAX_BUNDLE_SIZE:
            raise BundleSubmissionError(
                f"Bundle has {len(transactions)} transactions, limit is {MAX_BUNDLE_SIZE}"
            )

        encoded = [base64.b64encode(bytes(tx)).decode("ascii") for tx in transactions]
        bundle_id = await self._rpc("/api/v1/bundles", "sendBundle", [encoded, {"encoding": "base64"}])
        self.logger.info(f"Jito bundle accepted: {bundle_id}")
        return str(bundle_id)

    async def get_tip_accounts(self) -> List[str]:
        result = await self._rpc("/api/v1/bundles", "getTipAccounts", [])
        return [str(account) for account in result]
