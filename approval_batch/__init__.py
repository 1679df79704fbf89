"""
approval_batch -- reconciliation stages and their driver.

Provides the verifier (SUBMITTED -> VERIFIED / VERIFICATION_FAILED), the
transfer executor (VERIFIED -> TRANSFERRED / TRANSFER_FAILED), an
in-process polling scheduler that runs both on fixed intervals, the
composition root, and the ``approval-sweeper`` CLI.

Architecture:
    approval_batch/ is a top-level package.  Nothing in approval_kernel,
    approval_config, or approval_ledger imports from approval_batch.

Invariants:
    - Every lifecycle write is a state-guarded transition.
    - A broadcast batch is claimed on the record before it is sent.
    - Cycle failures never stop the scheduler.
    - Graceful shutdown on SIGINT / SIGTERM.
"""
