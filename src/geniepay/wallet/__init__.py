"""Wallet connectivity for GeniePay.

Provides the external signer interface, a local encrypted-keystore signer
for EVM chains (Ethereum, Sepolia, Optimism, Base, Arbitrum, Polygon), the
connected-wallet event observer, and optional signature verifiers.
"""
