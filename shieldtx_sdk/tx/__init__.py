"""
Transaction construction, signing, submission and classification.
"""
from .builders import (
    TxArgs, TxBuilder, RevealPkBuilder, TransparentTransferBuilder,
    ShieldingTransferBuilder, UnshieldingTransferBuilder
)
from .signing import Signer
from .submit import Submitter
from .classify import ResultClassifier, is_tx_rejected, get_tx_errors

__all__ = [
    'TxArgs', 'TxBuilder', 'RevealPkBuilder', 'TransparentTransferBuilder',
    'ShieldingTransferBuilder', 'UnshieldingTransferBuilder', 'Signer',
    'Submitter', 'ResultClassifier', 'is_tx_rejected', 'get_tx_errors'
]
