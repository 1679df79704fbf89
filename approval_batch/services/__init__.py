from approval_batch.services.scheduler import ReconciliationScheduler, StageLoop
from approval_batch.services.transfer_executor import TransferExecutor
from approval_batch.services.verifier import ApprovalVerifier

__all__ = [
    "ApprovalVerifier",
    "ReconciliationScheduler",
    "StageLoop",
    "TransferExecutor",
]
