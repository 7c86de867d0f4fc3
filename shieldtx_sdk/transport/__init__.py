"""
Transport module for the ShieldTx SDK.

Chain node access is abstracted behind ChainTransport; JsonRpcTransport
talks to a real node and LocalLedger runs an in-process chain.
"""
from .base import ChainTransport, get_transport, get_local_transport
from .http import JsonRpcTransport
from .local import LocalLedger

__all__ = ['ChainTransport', 'JsonRpcTransport', 'LocalLedger', 'get_transport',
           'get_local_transport']
