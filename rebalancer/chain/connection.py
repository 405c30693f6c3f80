import asyncio
import logging

from web3 import AsyncHTTPProvider, AsyncWeb3

from rebalancer.utils.config_loader import ChainSettings

logger = logging.getLogger(__name__)

RPC_REQUEST_TIMEOUT = 30


class ChainConnection:
    """RPC endpoint plus the signing account the rebalancer trades from."""

    def __init__(self, settings: ChainSettings, private_key: str, w3: AsyncWeb3 | None = None):
        if not private_key:
            raise ValueError("REBALANCER_PRIVATE_KEY is required to sign transactions")
        self.settings = settings
        self.w3 = w3 or AsyncWeb3(
            AsyncHTTPProvider(settings.rpc_url, request_kwargs={"timeout": RPC_REQUEST_TIMEOUT})
        )
        self.account = self.w3.eth.account.from_key(private_key)
        self._chain_id: int | None = None

    @property
    def address(self) -> str:
        return self.account.address

    async def connect(self) -> bool:
        """
        Checks the RPC endpoint answers and caches the chain id.

        Returns:
            True if connected, False otherwise
        """
        try:
            logger.info(f"Connecting to RPC at {self.settings.rpc_url} as {self.address}")
            if not await self.w3.is_connected():
                logger.error(f"RPC endpoint {self.settings.rpc_url} is not reachable")
                return False
            self._chain_id = int(await self.w3.eth.chain_id)
            logger.info(f"Connected to chain {self._chain_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to connect to RPC: {type(e).__name__}: {e}")
            return False

    async def ensure_connected(self, max_retries: int = 3) -> bool:
        """
        Ensures the endpoint is reachable, reconnecting if necessary.

        Returns:
            True if connected, False if all reconnection attempts failed
        """
        if self._chain_id is not None and await self.w3.is_connected():
            return True

        logger.warning("RPC connection not established, attempting to connect...")
        for attempt in range(1, max_retries + 1):
            logger.info(f"Connection attempt {attempt}/{max_retries}")
            if await self.connect():
                return True
            await asyncio.sleep(2 ** attempt)

        logger.error(f"Failed to connect to RPC after {max_retries} attempts")
        return False

    async def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = int(await self.w3.eth.chain_id)
        return self._chain_id

    def contract(self, address: str, abi: list):
        return self.w3.eth.contract(address=AsyncWeb3.to_checksum_address(address), abi=abi)

    async def disconnect(self) -> None:
        await self.w3.provider.disconnect()
        logger.info("Disconnected from RPC.")
