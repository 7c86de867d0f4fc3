"""
Transaction submission.
"""
import logging
from typing import Optional

from ..exceptions import TransportError
from ..models import ExecutionOutcome, SignedTx
from ..session import ChainSession

logger = logging.getLogger(__name__)


class Submitter:
    """
    Broadcasts signed transactions and waits for the node's answer.

    Submissions are never retried; a transport failure becomes the outcome.
    """

    def __init__(self, session: ChainSession, timeout: Optional[float] = None):
        self.session = session
        self.timeout = timeout

    def submit(self, signed: SignedTx) -> ExecutionOutcome:
        logger.debug(f"Submitting {signed.tx.kind.value} transaction {signed.commitment}")
        try:
            response = self.session.submit(signed, self.timeout)
        except TransportError as e:
            logger.error(f"Submission of wrapper {signed.wrapper_hash} failed: {e}")
            return ExecutionOutcome.from_error(e)

        logger.info(f"Wrapper transaction hash: {response.hash or signed.wrapper_hash}")
        logger.debug(f"Transaction result: {response.model_dump_json()}")
        return ExecutionOutcome.from_response(response)
