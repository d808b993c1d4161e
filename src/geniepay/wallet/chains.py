"""Chain definitions for supported EVM networks."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Chain:
    """An EVM-compatible blockchain network."""

    name: str
    chain_id: int
    rpc_url: str
    native_symbol: str
    explorer_url: str
    display_name: str

    def tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url}/tx/{tx_hash}"


CHAINS: dict[str, Chain] = {
    "ethereum": Chain(
        name="ethereum",
        chain_id=1,
        rpc_url="https://eth.llamarpc.com",
        native_symbol="ETH",
        explorer_url="https://etherscan.io",
        display_name="Ethereum Mainnet",
    ),
    "sepolia": Chain(
        name="sepolia",
        chain_id=11155111,
        rpc_url="https://ethereum-sepolia-rpc.publicnode.com",
        native_symbol="ETH",
        explorer_url="https://sepolia.etherscan.io",
        display_name="Sepolia Testnet",
    ),
    "optimism": Chain(
        name="optimism",
        chain_id=10,
        rpc_url="https://mainnet.optimism.io",
        native_symbol="ETH",
        explorer_url="https://optimistic.etherscan.io",
        display_name="OP Mainnet",
    ),
    "base": Chain(
        name="base",
        chain_id=8453,
        rpc_url="https://mainnet.base.org",
        native_symbol="ETH",
        explorer_url="https://basescan.org",
        display_name="Base",
    ),
    "arbitrum": Chain(
        name="arbitrum",
        chain_id=42161,
        rpc_url="https://arb1.arbitrum.io/rpc",
        native_symbol="ETH",
        explorer_url="https://arbiscan.io",
        display_name="Arbitrum One",
    ),
    "polygon": Chain(
        name="polygon",
        chain_id=137,
        rpc_url="https://polygon-rpc.com",
        native_symbol="POL",
        explorer_url="https://polygonscan.com",
        display_name="Polygon",
    ),
}


def get_chain(name: str) -> Chain:
    """Get a chain by name. Raises ``KeyError`` if not found."""
    if name not in CHAINS:
        raise KeyError(
            f"Unknown chain '{name}'. Available: {list_chain_names()}"
        )
    return CHAINS[name]


def get_chain_by_id(chain_id: int) -> Chain | None:
    """Look a chain up by its numeric id, or ``None`` if unsupported."""
    for chain in CHAINS.values():
        if chain.chain_id == chain_id:
            return chain
    return None


def list_chain_names() -> list[str]:
    """Return the names of all supported chains."""
    return list(CHAINS.keys())
