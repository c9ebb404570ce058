"""JSON-RPC failover gateway for pRPC storage-network nodes."""

__version__ = "0.1.0"
