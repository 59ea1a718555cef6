from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING

import structlog
import uvicorn
from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute

from relay.jobs.reconciliation import ReconciliationJobs
from relay.ledger.sequencer import TransactionSequencer
from relay.ledger.web3_client import Web3LedgerClient
from relay.messaging.router import MessageRouter
from relay.server.admission import AdmissionController
from relay.server.rate_limit import ActionRateLimiter
from relay.server.settings import RelaySettings
from relay.server.websocket import websocket_endpoint
from relay.session.auth_gate import AuthGate
from relay.session.registry import SessionRegistry
from shared.build_info import APP_VERSION, GIT_COMMIT
from shared.logging import setup_logging

logger = structlog.get_logger()

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from starlette.requests import Request
    from starlette.websockets import WebSocket

    from relay.ledger.client import LedgerClient


async def health(_request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok", "version": APP_VERSION, "commit": GIT_COMMIT})


async def status(request: Request) -> JSONResponse:
    state = request.app.state
    settings: RelaySettings = state.settings
    return JSONResponse(
        {
            "status": "ok",
            "version": APP_VERSION,
            "commit": GIT_COMMIT,
            "connections": state.admission.connection_count,
            "authenticated": state.auth_gate.authenticated_count,
            "active_sessions": state.registry.session_count,
            "pending_submissions": state.sequencer.pending_count,
            "max_connections": settings.max_connections,
        },
    )


def create_app(
    settings: RelaySettings | None = None,
    ledger: LedgerClient | None = None,
    sequencer: TransactionSequencer | None = None,
    registry: SessionRegistry | None = None,
) -> Starlette:
    if settings is None:  # pragma: no cover
        settings = RelaySettings()  # ty: ignore[missing-argument]

    if ledger is None:  # pragma: no cover
        ledger = Web3LedgerClient(
            settings.rpc_url,
            settings.contract_address,
            settings.operator_private_key.get_secret_value(),
            settings.chain_id,
            gas_limit=settings.tx_gas_limit,
            receipt_timeout=settings.receipt_timeout_seconds,
        )

    if sequencer is None:
        sequencer = TransactionSequencer(default_timeout=settings.tx_timeout_seconds)

    if registry is None:
        registry = SessionRegistry(
            ledger,
            sequencer,
            attempts_per_ticket=settings.attempts_per_ticket,
            max_session_duration_ms=settings.max_session_duration_ms,
            min_obstacle_interval_ms=settings.min_obstacle_interval_ms,
        )

    auth_gate = AuthGate(settings.service_name)
    limiter = ActionRateLimiter(settings.rate_limit_window_seconds, settings.rate_limit_max_actions)
    admission = AdmissionController(
        settings.max_connections,
        settings.max_connections_per_origin,
        trusted_proxies=settings.trusted_proxies,
        forwarded_for_header=settings.forwarded_for_header,
    )
    message_router = MessageRouter(
        auth_gate,
        registry,
        limiter,
        auth_timeout_seconds=settings.auth_timeout_seconds,
    )
    jobs = ReconciliationJobs(
        ledger,
        sequencer,
        registry,
        stale_grace_ms=settings.stale_session_grace_ms,
        min_operator_balance_wei=settings.min_operator_balance_wei,
    )

    async def ws_endpoint(websocket: WebSocket) -> None:
        await websocket_endpoint(
            websocket,
            message_router,
            admission,
            max_message_bytes=settings.max_message_bytes,
        )

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/status", status, methods=["GET"]),
        WebSocketRoute("/ws", ws_endpoint),
    ]

    @contextlib.asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncGenerator[None]:
        sequencer.start()
        jobs.start(
            stale_sweep_interval=settings.stale_sweep_interval_seconds,
            tournament_close_interval=settings.tournament_close_interval_seconds,
            fee_claim_interval=settings.fee_claim_interval_seconds,
            balance_check_interval=settings.balance_check_interval_seconds,
        )
        logger.info("relay started", operator=ledger.operator_address, chain_id=settings.chain_id)
        yield
        message_router.cancel_all_auth_timeouts()
        await jobs.stop()
        await sequencer.stop()
        logger.info("relay stopped")

    app = Starlette(routes=routes, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_methods=["GET"],
        allow_headers=["Content-Type"],
    )
    app.state.settings = settings
    app.state.ledger = ledger
    app.state.sequencer = sequencer
    app.state.registry = registry
    app.state.auth_gate = auth_gate
    app.state.admission = admission
    app.state.router = message_router
    app.state.jobs = jobs

    logger.info("relay ready")
    return app


def get_app() -> Starlette:  # pragma: no cover
    """Factory function for uvicorn --factory relay.server.app:get_app."""
    s = RelaySettings()  # ty: ignore[missing-argument]
    setup_logging(level=s.log_level, log_format=s.log_format, log_dir=s.log_dir, static_fields=s.log_fields())
    return create_app(settings=s)


def run() -> None:  # pragma: no cover
    """Console entry point: validate configuration, then serve."""
    s = RelaySettings()  # ty: ignore[missing-argument]
    uvicorn.run(
        "relay.server.app:get_app",
        factory=True,
        host=s.host,
        port=s.port,
        ws_max_size=s.max_message_bytes,
        log_config=None,
    )
