"""
Treasury Pull Server - FastAPI wrapper around the delegated transfer core.

Wires configuration into the chain gateway, the challenge builder, the
signature verifier, the authorization store and the transfer orchestrator,
and exposes them over HTTP with typed lifecycle events.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError

from .. import __version__
from ..adapters.bases import ChainGateway, ContractCall
from ..adapters.evm.constants import checksum, is_valid_evm_address
from ..adapters.evm.ERC20_ABI import get_treasury_puller_abi
from ..adapters.evm.gateway import EVMGateway
from ..adapters.evm.schemas import Authorization, DeclarationValue, OnChainAuthorizationStatus
from ..adapters.evm.signatures import TypedMessageBuilder, typed_data_for_wallet
from ..adapters.evm.verifies import SignatureVerifier, check_signature_shape
from ..engine.events import AuthorizationStoredEvent, BaseEvent, EventBus
from ..engine.exceptions import (
    BlockchainInteractionError,
    ConfigurationError,
    InclusionTimeout,
    InvalidInput,
    TreasuryPullError,
    UpstreamUnavailable,
)
from ..engine.orchestrator import TransferOrchestrator
from ..engine.stores import AuthorizationStore, InMemoryAuthorizationStore
from ..engine.strategies import build_strategy
from ..schemas.https import (
    AuthorizeRequest,
    HealthResponse,
    SignatureChallengeRequest,
    TransferTokensRequest,
)
from .config import TreasuryConfig


logger = logging.getLogger(__name__)


def status_code_for(error: TreasuryPullError) -> int:
    """HTTP status for a core error."""
    if isinstance(error, InclusionTimeout):
        return 504
    if isinstance(error, UpstreamUnavailable):
        return 503
    if isinstance(error, ConfigurationError):
        return 500
    if isinstance(error, BlockchainInteractionError):
        return 502
    return 400


def _validation_details(errors: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [{"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")} for err in errors]


class TreasuryServer(FastAPI):
    """FastAPI server for signature-based delegated transfers."""

    def __init__(
        self,
        config: TreasuryConfig,
        gateway: Optional[ChainGateway] = None,
        store: Optional[AuthorizationStore] = None,
        clock: Callable[[], float] = time.time,
        **fastapi_kwargs
    ):
        """Initialize the treasury pull server.

        Args:
            config: Deployment configuration
            gateway: Chain gateway (default: EVMGateway built from ``config``)
            store: Authorization store (default: in-memory store)
            clock: Time source shared by every component
            **fastapi_kwargs: FastAPI arguments (title, version, etc.)
        """
        # Setup dependencies before FastAPI init
        self.config = config
        self.clock = clock
        self.gateway = gateway or EVMGateway(
            rpc_url=config.rpc_url,
            private_key=config.private_key,
            request_timeout=config.rpc_timeout_seconds,
            receipt_timeout=config.receipt_timeout_seconds,
        )
        self.store = store or InMemoryAuthorizationStore(
            grace_seconds=config.authorization_grace_seconds,
            clock=clock,
        )
        self.event_bus = EventBus()
        self.strategy = build_strategy(
            config.delegation_strategy,
            config.treasury_puller_address,
            router=config.permit2_address,
            auto_approve=config.auto_approve_router,
        )
        self.builder = TypedMessageBuilder(
            self.gateway,
            token_address=config.token_address,
            verifying_contract=config.treasury_puller_address,
            spender=config.treasury_puller_address,
            expected_chain_id=config.expected_chain_id,
            validity_window=config.signature_validity_seconds,
            clock=clock,
        )
        self.verifier = SignatureVerifier()
        self.orchestrator = TransferOrchestrator(
            self.gateway,
            self.store,
            self.strategy,
            token_address=config.token_address,
            event_bus=self.event_bus,
            serialize_per_user=config.serialize_per_user,
            consume_on_success=config.consume_on_success,
            clock=clock,
        )

        fastapi_kwargs.setdefault("title", "Treasury Pull")
        fastapi_kwargs.setdefault("version", __version__)
        fastapi_kwargs.setdefault("lifespan", self._lifespan)
        super().__init__(**fastapi_kwargs)

        self.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        self.add_exception_handler(TreasuryPullError, self._handle_core_error)
        self.add_exception_handler(RequestValidationError, self._handle_validation_error)

        self._setup_core_endpoints()
        self._setup_operational_endpoints()

    def hook(self, event_class: type[BaseEvent]) -> Callable:
        """Decorator for registering event hooks.

        Args:
            event_class: Event type to hook into

        Example:
            @app.hook(TransferSucceededEvent)
            async def on_transfer(event):
                await notify(event.result.transaction_hash)
        """
        def decorator(hook_func: Callable) -> Callable:
            self.event_bus.hook(event_class, hook_func)
            return hook_func
        return decorator

    # ==================== Lifecycle ====================

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        chain_id = await self.builder.resolve_chain_id()
        logger.info(
            "Treasury pull server ready chain_id=%s puller=%s token=%s strategy=%s",
            chain_id, self.config.treasury_puller_address, self.config.token_address, self.strategy.name,
        )
        sweeper = None
        if isinstance(self.store, InMemoryAuthorizationStore):
            sweeper = asyncio.create_task(self._sweep_expired(self.store))
        try:
            yield
        finally:
            if sweeper is not None:
                sweeper.cancel()
                with suppress(asyncio.CancelledError):
                    await sweeper

    async def _sweep_expired(self, store: InMemoryAuthorizationStore) -> None:
        while True:
            await asyncio.sleep(self.config.eviction_interval_seconds)
            store.evict_expired()

    # ==================== Error mapping ====================

    async def _handle_core_error(self, request: Request, exc: TreasuryPullError) -> JSONResponse:
        status_code = status_code_for(exc)
        if status_code >= 500:
            logger.error("%s %s failed: %s %s", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    async def _handle_validation_error(self, request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "error": InvalidInput.code,
                "message": "Invalid request body",
                "details": _validation_details(exc.errors()),
            },
        )

    # ==================== Routes ====================

    def _setup_core_endpoints(self) -> None:
        """Setup the signature, authorization and transfer endpoints."""

        @self.post("/get-signature-request")
        async def get_signature_request(body: SignatureChallengeRequest):
            """Build a compliance declaration for the user to sign."""
            message = await self.builder.build(body.user_address, body.amount)
            typed = typed_data_for_wallet(message)
            return JSONResponse(
                status_code=200,
                content={
                    "domain": typed["domain"],
                    "types": typed["types"],
                    "primaryType": typed["primaryType"],
                    "value": typed["message"],
                },
            )

        @self.post("/authorize")
        async def authorize(body: AuthorizeRequest):
            """Verify a signed declaration and store it as the user's authorization."""
            check_signature_shape(body.signature, body.value.get("nonce"))
            try:
                value = DeclarationValue.model_validate(body.value)
            except ValidationError as e:
                raise InvalidInput(
                    "Invalid signed value",
                    details=_validation_details(e.errors()),
                ) from e
            self.builder.check_binding(value)

            message = await self.builder.assemble(value)
            self.verifier.verify(body.user_address, body.signature, message)
            await self._probe_treasury()

            authorization = Authorization(
                user_address=body.user_address,
                signature=body.signature,
                signed_value=value,
                received_at=self.clock(),
            )
            await self.store.put(body.user_address, authorization)
            logger.info(
                "Stored authorization user=%s amount=%s deadline=%s",
                body.user_address, value.amount, value.deadline,
            )
            await self.event_bus.emit(AuthorizationStoredEvent(
                user_address=body.user_address,
                amount=value.amount,
                nonce=value.nonce,
                deadline=value.deadline,
            ))
            return JSONResponse(
                status_code=200,
                content={
                    "success": True,
                    "message": "User signature stored for delegated transfer",
                    "userAddress": body.user_address,
                    "deadline": value.deadline,
                },
            )

        @self.post("/transfer-tokens")
        async def transfer_tokens(body: TransferTokensRequest):
            """Pull tokens from the user under their stored authorization."""
            result = await self.orchestrator.transfer(body.user_address, body.amount)
            return JSONResponse(status_code=200, content=result.to_response())

        @self.get("/authorization-status/{user_address}")
        async def authorization_status(user_address: str):
            """On-chain puller view for the user and the server wallet, plus the local record."""
            if not is_valid_evm_address(user_address):
                raise InvalidInput("Invalid user address", user_address=user_address)
            user_address = checksum(user_address)

            user_status, server_status = await asyncio.gather(
                self._check_authorization(user_address),
                self._check_authorization(self.gateway.wallet_address),
            )
            stored = await self.store.get(user_address)
            return JSONResponse(
                status_code=200,
                content={
                    "userAddress": user_address,
                    "tokenAddress": self.config.token_address,
                    "userAuthorization": user_status.to_dict(),
                    "serverAuthorization": server_status.to_dict(),
                    "serverWallet": self.gateway.wallet_address,
                    "storedAuthorization": stored.summary(self.clock()) if stored else {"present": False},
                    "message": "Authorization status check completed",
                },
            )

    def _setup_operational_endpoints(self) -> None:
        """Setup health, configuration and liveness endpoints."""

        @self.get("/api/health")
        async def health():
            payload = HealthResponse(
                timestamp=datetime.now(timezone.utc).isoformat(),
                version=__version__,
            )
            return JSONResponse(status_code=200, content=payload.model_dump(mode="json"))

        @self.get("/config")
        async def config_report():
            return JSONResponse(status_code=200, content=self.config.describe())

        @self.get("/", response_class=PlainTextResponse)
        async def root():
            return "Treasury pull backend running."

    # ==================== Chain helpers ====================

    async def _probe_treasury(self) -> str:
        """Confirm the puller contract answers before accepting an authorization."""
        try:
            treasury = await self.gateway.call(ContractCall(
                self.config.treasury_puller_address, get_treasury_puller_abi(), "treasury",
            ))
        except BlockchainInteractionError as e:
            raise UpstreamUnavailable(
                f"Treasury puller contract is not accessible: {e.message}",
                operation="treasury",
            ) from e
        return treasury

    async def _check_authorization(self, address: str) -> OnChainAuthorizationStatus:
        is_authorized, is_valid = await self.gateway.call(ContractCall(
            self.config.treasury_puller_address,
            get_treasury_puller_abi(),
            "checkAuthorization",
            (address, self.config.token_address),
        ))
        return OnChainAuthorizationStatus(is_authorized=bool(is_authorized), is_valid=bool(is_valid))


def create_app(config: Optional[TreasuryConfig] = None, **kwargs) -> TreasuryServer:
    """Build the server from ``config`` (default: loaded from the environment)."""
    return TreasuryServer(config or TreasuryConfig.from_env(), **kwargs)
