"""
Network identifiers and their chain family.

x402 networks arrive either as short names (`base`, `solana-devnet`) or as
CAIP-2 ids (`eip155:8453`, `solana:5eykt4UsFv8P8NJdTREpY1vzqKqZKvdp`).
"""

from enum import Enum
from typing import Optional

SOLANA_MAINNET = "solana:5eykt4UsFv8P8NJdTREpY1vzqKqZKvdp"

# USDC has 6 decimals on every supported chain
USDC_DECIMALS = 1_000_000

EVM_CHAIN_IDS = {
    "base": 8453,
    "base-sepolia": 84532,
    "ethereum": 1,
}

EVM_USDC_CONTRACTS = {
    1: "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
    8453: "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
    84532: "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
}

SOLANA_USDC_MINTS = {
    "mainnet": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
    "devnet": "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU",
}

SOLANA_SHORT_NAMES = {"solana", "solana-devnet", "solana-testnet"}


class NetworkFamily(str, Enum):
    EVM = "evm"
    SOLANA = "solana"
    UNSUPPORTED = "unsupported"


def classify_network(network: Optional[str]) -> NetworkFamily:
    if not network:
        return NetworkFamily.UNSUPPORTED
    if network.startswith("eip155:") or network in EVM_CHAIN_IDS:
        return NetworkFamily.EVM
    if network in SOLANA_SHORT_NAMES or network.startswith("solana:"):
        return NetworkFamily.SOLANA
    return NetworkFamily.UNSUPPORTED


def evm_chain_id(network: str) -> Optional[int]:
    """Chain id for an EVM network name or `eip155:<id>`; None if unknown."""
    if network in EVM_CHAIN_IDS:
        return EVM_CHAIN_IDS[network]
    if network.startswith("eip155:"):
        try:
            return int(network.split(":", 1)[1])
        except ValueError:
            return None
    return None


def is_solana_devnet(network: str) -> bool:
    return network in ("solana-devnet", "solana-testnet") or (
        network.startswith("solana:") and network != SOLANA_MAINNET
    )
