"""
SweeperOrchestrator -- composition root for the approval sweeper.

Contract:
    Builds the engine, session factory, approval store, gateway registry,
    verifier, transfer executor and scheduler from one ``SweeperConfig``.
    Single place where all sweeper dependencies are composed.

Architecture: approval_batch (top-level).  The CLI and tests construct the
    system through this class; nothing else builds engines or gateways.

Invariants enforced:
    - Clock injection: every service receives the same Clock.
    - Scoped lifecycle: ``close()`` closes every gateway and disposes the
      engine; no process-global clients.
"""

from __future__ import annotations

from sqlalchemy.engine import Engine

from approval_config.schema import SweeperConfig
from approval_kernel.db.engine import (
    SessionFactory,
    build_engine,
    build_session_factory,
    create_tables,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.logging_config import get_logger
from approval_kernel.services.approval_store import ApprovalStore
from approval_ledger.registry import (
    GatewayFactory,
    GatewayRegistry,
    SignerFactory,
    keypair_signer_factory,
    solana_gateway_factory,
)
from approval_batch.services.scheduler import ReconciliationScheduler
from approval_batch.services.transfer_executor import TransferExecutor
from approval_batch.services.verifier import ApprovalVerifier

logger = get_logger("batch.orchestrator")


class SweeperOrchestrator:
    """DI container for the approval sweeper.

    Contract:
        - ``from_config()`` builds a fully wired orchestrator.
        - ``create_scheduler()`` returns a scheduler for the chosen stages.
        - ``init_db()`` creates the approval tables.
        - ``close()`` releases gateways and the engine.

    Non-goals:
        - Does NOT start the scheduler automatically -- caller decides.
    """

    def __init__(
        self,
        config: SweeperConfig,
        store: ApprovalStore,
        gateways: GatewayRegistry,
        clock: Clock | None = None,
        engine: Engine | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._gateways = gateways
        self._clock = clock or SystemClock()
        self._engine = engine
        self._verifier = ApprovalVerifier(
            store, gateways, clock=self._clock, batch_limit=config.batch_limit,
        )
        self._executor = TransferExecutor(
            store, gateways, clock=self._clock, batch_limit=config.batch_limit,
        )

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        config: SweeperConfig,
        clock: Clock | None = None,
        session_factory: SessionFactory | None = None,
        gateway_factory: GatewayFactory = solana_gateway_factory,
        signer_factory: SignerFactory = keypair_signer_factory,
    ) -> SweeperOrchestrator:
        """Create a fully wired orchestrator.

        Args:
            config: Effective sweeper configuration.
            clock: Optional clock for deterministic testing.
            session_factory: Optional pre-built session factory.  If None,
                an engine is built from ``config.database_url``.
            gateway_factory: Builds one LedgerGateway per network.
            signer_factory: Decodes a delegate secret into a Signer.
        """
        effective_clock = clock or SystemClock()
        engine = None
        if session_factory is None:
            engine = build_engine(config.database_url)
            session_factory = build_session_factory(engine)

        orchestrator = cls(
            config=config,
            store=ApprovalStore(session_factory, clock=effective_clock),
            gateways=GatewayRegistry(
                config,
                gateway_factory=gateway_factory,
                signer_factory=signer_factory,
            ),
            clock=effective_clock,
            engine=engine,
        )
        logger.info(
            "orchestrator_created",
            extra={
                "networks": list(config.network_names),
                "batch_limit": config.batch_limit,
            },
        )
        return orchestrator

    # -------------------------------------------------------------------------
    # Scheduler
    # -------------------------------------------------------------------------

    def create_scheduler(
        self,
        verify: bool = True,
        transfer: bool = True,
    ) -> ReconciliationScheduler:
        """Create a scheduler running the selected stages."""
        return ReconciliationScheduler(
            store=self._store,
            verify_cycle=self._verifier.run_cycle if verify else None,
            transfer_cycle=self._executor.run_cycle if transfer else None,
            verify_interval_seconds=self._config.verify_interval_seconds,
            transfer_interval_seconds=self._config.transfer_interval_seconds,
        )

    def init_db(self) -> None:
        if self._engine is None:
            raise RuntimeError("init_db requires an orchestrator built from a database URL")
        create_tables(self._engine)

    def close(self) -> None:
        self._gateways.close()
        if self._engine is not None:
            self._engine.dispose()
        logger.info("orchestrator_closed")

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def config(self) -> SweeperConfig:
        return self._config

    @property
    def store(self) -> ApprovalStore:
        return self._store

    @property
    def gateways(self) -> GatewayRegistry:
        return self._gateways

    @property
    def verifier(self) -> ApprovalVerifier:
        return self._verifier

    @property
    def executor(self) -> TransferExecutor:
        return self._executor

    @property
    def clock(self) -> Clock:
        return self._clock
