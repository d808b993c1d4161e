"""GeniePay - wallet sign-in sessions and native-token payments for EVM wallets."""

__version__ = "0.1.0"
