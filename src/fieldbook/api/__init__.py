"""Back-office RPC access."""

from .client import SUPPORTED_METHODS, RpcClient
from .models import RpcResponse

__all__ = ["RpcClient", "RpcResponse", "SUPPORTED_METHODS"]
