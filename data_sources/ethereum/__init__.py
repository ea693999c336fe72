"""Ethereum JSON-RPC data source for the deposit contract."""
from data_sources.ethereum.rpc import DEPOSIT_EVENT_TOPIC, EthereumRPCClient, decode_deposit_log

__all__ = ["DEPOSIT_EVENT_TOPIC", "EthereumRPCClient", "decode_deposit_log"]
