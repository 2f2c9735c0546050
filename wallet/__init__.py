"""Custodial wallet access and agent operations."""

from wallet.agentkit import (
    ActionStatus,
    ActionType,
    AgentAction,
    AgentKitService,
    PaymasterConfig,
    SponsorshipResult,
    SuperPayTransaction,
)
from wallet.cdp_client import CdpWalletClient, WalletClientError
from wallet.moralis_client import (
    InvalidAddressError,
    MoralisClient,
    MoralisClientError,
    MoralisNotConfiguredError,
)

__all__ = [
    "CdpWalletClient",
    "WalletClientError",
    "MoralisClient",
    "MoralisClientError",
    "MoralisNotConfiguredError",
    "InvalidAddressError",
    "AgentKitService",
    "AgentAction",
    "ActionType",
    "ActionStatus",
    "PaymasterConfig",
    "SponsorshipResult",
    "SuperPayTransaction",
]
