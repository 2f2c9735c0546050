"""
Coinbase Developer Platform (CDP) wallet API client.

Documentation: https://docs.cdp.coinbase.com/
"""

import logging
from decimal import Decimal
from typing import Any, Optional, Union

import httpx

logger = logging.getLogger(__name__)

Amount = Union[Decimal, int, float, str]


class WalletClientError(Exception):
    """Error communicating with the wallet provider."""

    def __init__(self, message: str, status_code: Optional[int] = None, response: Optional[dict] = None):
        self.status_code = status_code
        self.response = response
        super().__init__(message)


class CdpWalletClient:
    """
    Client for the CDP custodial wallet API.

    Features:
    - Wallet and address management
    - Balances
    - Transfers, staking, contract deployment
    - Testnet faucet
    """

    BASE_URL = "https://api.cdp.coinbase.com/platform/v1"
    DEFAULT_NETWORK = "base-sepolia"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        network_id: str = DEFAULT_NETWORK,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize CDP wallet client.

        Args:
            api_key: CDP API key.
            base_url: Override for the API root.
            network_id: Network new wallets are created on.
            timeout: HTTP request timeout in seconds.
            transport: Optional httpx transport (tests).
        """
        self.api_key = api_key
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.network_id = network_id
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        """Check if client is properly configured."""
        return bool(self.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Wallets and addresses
    # ------------------------------------------------------------------

    async def create_wallet(self, name: Optional[str] = None) -> dict[str, Any]:
        """Create a wallet on the configured network."""
        payload: dict[str, Any] = {"wallet": {"network_id": self.network_id}}
        if name:
            payload["wallet"]["name"] = name
        wallet = await self._make_request("POST", "/wallets", json=payload)
        logger.info(f"Created wallet {wallet.get('id')} on {self.network_id}")
        return wallet

    async def list_wallets(self, limit: int = 10) -> list[dict[str, Any]]:
        result = await self._make_request("GET", "/wallets", params={"limit": limit})
        return result.get("data", [])

    async def get_balance(self, wallet_id: str, asset_id: Optional[str] = None) -> dict[str, Any]:
        """
        Get wallet balances.

        Args:
            wallet_id: Wallet to inspect.
            asset_id: Single asset (e.g. "eth"); all assets when omitted.
        """
        path = f"/wallets/{wallet_id}/balances"
        if asset_id:
            path = f"{path}/{asset_id}"
        return await self._make_request("GET", path)

    async def create_address(self, wallet_id: str) -> dict[str, Any]:
        return await self._make_request("POST", f"/wallets/{wallet_id}/addresses", json={})

    async def list_addresses(self, wallet_id: str) -> list[dict[str, Any]]:
        result = await self._make_request("GET", f"/wallets/{wallet_id}/addresses")
        return result.get("data", [])

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def transfer(
        self,
        wallet_id: str,
        address_id: str,
        destination: str,
        amount: Amount,
        asset_id: str,
    ) -> dict[str, Any]:
        """Send ``amount`` of ``asset_id`` to ``destination``."""
        return await self._make_request(
            "POST",
            f"/wallets/{wallet_id}/addresses/{address_id}/transfers",
            json={
                "amount": str(amount),
                "asset_id": asset_id,
                "destination": destination,
                "network_id": self.network_id,
            },
        )

    async def list_transfers(self, wallet_id: str, address_id: str) -> list[dict[str, Any]]:
        result = await self._make_request(
            "GET", f"/wallets/{wallet_id}/addresses/{address_id}/transfers"
        )
        return result.get("data", [])

    async def stake(
        self,
        wallet_id: str,
        address_id: str,
        amount: Amount,
        asset_id: str,
        mode: str = "default",
    ) -> dict[str, Any]:
        return await self._make_request(
            "POST",
            f"/wallets/{wallet_id}/addresses/{address_id}/staking_operations",
            json={
                "network_id": self.network_id,
                "asset_id": asset_id,
                "action": "stake",
                "options": {"amount": str(amount), "mode": mode},
            },
        )

    async def deploy_contract(
        self,
        wallet_id: str,
        address_id: str,
        abi: Any,
        bytecode: str,
        args: Optional[list[Any]] = None,
    ) -> dict[str, Any]:
        return await self._make_request(
            "POST",
            f"/wallets/{wallet_id}/addresses/{address_id}/smart_contracts",
            json={
                "type": "custom",
                "options": {"abi": abi, "bytecode": bytecode, "constructor_args": args or []},
            },
        )

    async def request_faucet(self, wallet_id: str, address_id: str, asset_id: str = "eth") -> dict[str, Any]:
        """Request testnet funds for an address."""
        return await self._make_request(
            "POST",
            f"/wallets/{wallet_id}/addresses/{address_id}/faucet",
            params={"asset_id": asset_id},
        )

    async def _make_request(
        self,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Make HTTP request to the wallet API."""
        if not self.is_configured:
            raise WalletClientError("Wallet provider not configured")

        client = await self._get_client()

        try:
            response = await client.request(method, path, **kwargs)

            if response.status_code >= 400:
                try:
                    error_data = response.json() if response.content else {}
                except ValueError:
                    error_data = {}
                error_msg = error_data.get("message", "Unknown error") if isinstance(error_data, dict) else "Unknown error"
                raise WalletClientError(
                    f"Wallet API error: {error_msg}",
                    status_code=response.status_code,
                    response=error_data if isinstance(error_data, dict) else None,
                )

            if not response.content:
                return {}
            try:
                body = response.json()
            except ValueError as e:
                raise WalletClientError(
                    f"Invalid response body: {e}", status_code=response.status_code
                ) from e
            if not isinstance(body, dict):
                raise WalletClientError(
                    "Invalid response body: expected a JSON object",
                    status_code=response.status_code,
                )
            return body

        except httpx.TimeoutException as e:
            raise WalletClientError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise WalletClientError(f"Request error: {e}") from e
