"""
Moralis Web3 data API client.

Read-only chain data for player wallets: NFTs, token balances and prices,
transactions, DeFi positions, net worth and profitability.

Documentation: https://docs.moralis.io/web3-data-api/evm/reference
"""

import logging
import re
from typing import Any, Optional

import httpx

from wallet.cdp_client import WalletClientError

logger = logging.getLogger(__name__)

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


class MoralisClientError(WalletClientError):
    """Error communicating with the Moralis API."""


class MoralisNotConfiguredError(MoralisClientError):
    """No Moralis API key is configured."""

    def __init__(self) -> None:
        super().__init__("Moralis API key not configured")


class InvalidAddressError(ValueError):
    """Not a 0x-prefixed 20-byte hex address."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Invalid address: {address}")


def validate_address(address: str) -> str:
    address = (address or "").strip()
    if not ADDRESS_PATTERN.match(address):
        raise InvalidAddressError(address)
    return address


class MoralisClient:
    """
    Client for the Moralis EVM data API.

    All lookups default to the Polygon chain the game runs on.
    """

    BASE_URL = "https://deep-index.moralis.io/api/v2.2"
    DEFAULT_CHAIN = "polygon"
    PAGE_LIMIT = 100

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={"X-API-Key": self.api_key or "", "Accept": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # NFTs
    # ------------------------------------------------------------------

    async def get_wallet_nfts(self, wallet_address: str, chain: str = DEFAULT_CHAIN) -> Any:
        """NFTs held by a wallet."""
        address = validate_address(wallet_address)
        return await self._make_request(
            "GET", f"/{address}/nft", params={"chain": chain, "format": "decimal"}
        )

    async def get_contract_nfts(self, contract_address: str, chain: str = DEFAULT_CHAIN) -> Any:
        """NFTs minted by a collection contract."""
        address = validate_address(contract_address)
        return await self._make_request(
            "GET", f"/nft/{address}", params={"chain": chain, "format": "decimal"}
        )

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    async def get_token_balances(self, wallet_address: str, chain: str = DEFAULT_CHAIN) -> Any:
        """ERC-20 balances of a wallet."""
        address = validate_address(wallet_address)
        return await self._make_request("GET", f"/{address}/erc20", params={"chain": chain})

    async def get_token_price(self, token_address: str, chain: str = DEFAULT_CHAIN) -> Any:
        address = validate_address(token_address)
        return await self._make_request("GET", f"/erc20/{address}/price", params={"chain": chain})

    async def get_token_metadata(self, token_address: str, chain: str = DEFAULT_CHAIN) -> Any:
        address = validate_address(token_address)
        return await self._make_request(
            "GET", "/erc20/metadata", params={"chain": chain, "addresses[0]": address}
        )

    async def get_token_transfers(self, token_address: str, chain: str = DEFAULT_CHAIN) -> Any:
        address = validate_address(token_address)
        return await self._make_request(
            "GET", f"/erc20/{address}/transfers", params={"chain": chain, "limit": self.PAGE_LIMIT}
        )

    # ------------------------------------------------------------------
    # Wallet history and portfolio
    # ------------------------------------------------------------------

    async def get_wallet_transactions(self, wallet_address: str, chain: str = DEFAULT_CHAIN) -> Any:
        """Latest native transactions of a wallet, newest first."""
        address = validate_address(wallet_address)
        return await self._make_request(
            "GET", f"/{address}", params={"chain": chain, "limit": self.PAGE_LIMIT}
        )

    async def get_defi_positions(self, wallet_address: str, chain: str = DEFAULT_CHAIN) -> Any:
        address = validate_address(wallet_address)
        return await self._make_request(
            "GET", f"/wallets/{address}/defi/positions", params={"chain": chain}
        )

    async def get_net_worth(self, wallet_address: str, chain: str = DEFAULT_CHAIN) -> Any:
        address = validate_address(wallet_address)
        return await self._make_request(
            "GET", f"/wallets/{address}/net-worth", params={"chains[0]": chain}
        )

    async def get_pnl(self, wallet_address: str, chain: str = DEFAULT_CHAIN) -> Any:
        """Profit and loss summary of a wallet."""
        address = validate_address(wallet_address)
        return await self._make_request(
            "GET", f"/wallets/{address}/profitability/summary", params={"chain": chain}
        )

    async def _make_request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Make HTTP request to the Moralis API. Bodies may be objects or lists."""
        if not self.is_configured:
            raise MoralisNotConfiguredError()

        client = await self._get_client()

        try:
            response = await client.request(method, path, **kwargs)

            if response.status_code >= 400:
                try:
                    error_data = response.json() if response.content else {}
                except ValueError:
                    error_data = {}
                if not isinstance(error_data, dict):
                    error_data = {}
                error_msg = error_data.get("message") or response.reason_phrase
                raise MoralisClientError(
                    f"Moralis API error: {response.status_code} {error_msg}",
                    status_code=response.status_code,
                    response=error_data,
                )

            try:
                return response.json()
            except ValueError as e:
                raise MoralisClientError(
                    f"Invalid response body: {e}", status_code=response.status_code
                ) from e

        except httpx.TimeoutException as e:
            raise MoralisClientError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise MoralisClientError(f"Request error: {e}") from e
