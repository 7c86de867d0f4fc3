"""
Classification of execution outcomes.

A submission is accepted only when the inner transaction it carries is
found in the batch result under (wrapper hash, commitment) and was
applied. An applied wrapper says nothing about its inner transactions.
"""
import json
import logging
from typing import Optional

from ..exceptions import RejectedByChainError
from ..models import ExecutionOutcome, SignedTx, TxVerdict

logger = logging.getLogger(__name__)


class ResultClassifier:
    """Turns an ExecutionOutcome into an accepted or rejected TxVerdict."""

    def classify(self, signed: SignedTx, outcome: ExecutionOutcome) -> TxVerdict:
        wrapper_hash = signed.wrapper_hash
        commitment = signed.commitment

        def rejected(detail: str, height: Optional[int] = None) -> TxVerdict:
            return TxVerdict(
                accepted=False,
                commitment=commitment,
                wrapper_hash=wrapper_hash,
                height=height,
                detail=detail
            )

        if outcome.is_transport_error:
            return rejected(str(outcome.error))

        response = outcome.response
        if response is None:
            return rejected("No response from node")
        if not response.applied or response.batch is None:
            return rejected(response.info or f"Wrapper rejected with code {response.code}", response.height or None)

        result = response.batch.get_inner_tx_result(wrapper_hash, commitment)
        if result is None:
            return rejected(
                f"Inner transaction {commitment} not found in batch at height {response.batch.height}",
                response.batch.height
            )
        if not result.accepted:
            if result.error:
                return rejected(result.error, response.batch.height)
            return rejected(json.dumps(result.vps_errors), response.batch.height)

        return TxVerdict(
            accepted=True,
            commitment=commitment,
            wrapper_hash=wrapper_hash,
            height=response.batch.height
        )

    def require_accepted(self, signed: SignedTx, outcome: ExecutionOutcome) -> TxVerdict:
        """
        Classify and raise if the transaction was rejected.

        Raises:
            RejectedByChainError: If the verdict is rejected
        """
        verdict = self.classify(signed, outcome)
        if not verdict.accepted:
            logger.error(f"Transaction {signed.tx.kind.value} rejected: {verdict.detail}")
            raise RejectedByChainError(
                f"{signed.tx.kind.value} transaction rejected: {verdict.detail}",
                detail=verdict.detail,
                verdict=verdict
            )
        logger.info(f"Transaction {signed.tx.kind.value} accepted at height {verdict.height}")
        return verdict


def is_tx_rejected(signed: SignedTx, outcome: ExecutionOutcome) -> bool:
    return not ResultClassifier().classify(signed, outcome).accepted


def get_tx_errors(signed: SignedTx, outcome: ExecutionOutcome) -> Optional[str]:
    """Diagnostic detail of a rejected transaction, None when accepted."""
    verdict = ResultClassifier().classify(signed, outcome)
    return None if verdict.accepted else verdict.detail
