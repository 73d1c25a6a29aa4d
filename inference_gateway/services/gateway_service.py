import logging
from time import perf_counter
from typing import Protocol

from inference_gateway.config.settings import Settings
from inference_gateway.core.errors import (
    AppError,
    ConfigurationError,
    LedgerError,
    ProfileNotFound,
    QuotaExceeded,
)
from inference_gateway.identity.resolver import IdentityResolver, UserIdentity, bearer_credential
from inference_gateway.metrics import record_gate_outcome
from inference_gateway.quota.ledger import (
    LedgerBackendError,
    Profile,
    ProfileNotFoundError,
    QuotaLedger,
)
from inference_gateway.relay.stream import StreamRelay
from inference_gateway.upstream.gemini import UpstreamStream
from inference_gateway.upstream.translator import (
    UpstreamRequest,
    parse_chat_request,
    to_chat_messages,
    translate_request,
)

logger = logging.getLogger("igw.gateway")


class UpstreamClient(Protocol):
    async def open_stream(self, request: UpstreamRequest) -> UpstreamStream:
        """Return an accepted stream or raise ``UpstreamError``."""


class ChatGateway:
    """Sequences one chat request through the gate and into the relay.

    Order is fixed: identity, quota snapshot, translation, upstream call,
    usage increment, relay. Any failure before the relay is an ``AppError``
    with no side effects on the ledger, except a failed increment, which
    closes the already-accepted upstream stream.
    """

    def __init__(
        self,
        settings: Settings,
        identity_resolver: IdentityResolver,
        quota_ledger: QuotaLedger,
        upstream_client: UpstreamClient | None,
    ):
        self._settings = settings
        self._identity_resolver = identity_resolver
        self._quota_ledger = quota_ledger
        self._upstream_client = upstream_client

    async def handle_chat_stream(
        self, authorization: str | None, body: bytes, request_id: str
    ) -> StreamRelay:
        started = perf_counter()
        identity: UserIdentity | None = None
        model: str | None = None
        try:
            identity = await self._identity_resolver.resolve(bearer_credential(authorization))

            profile = await self._read_profile(identity)
            if profile.exhausted:
                raise QuotaExceeded()

            payload = parse_chat_request(body)
            upstream_request = translate_request(
                to_chat_messages(payload),
                model=payload.model,
                default_model=self._settings.default_model,
                max_output_tokens=self._settings.max_output_tokens,
            )
            model = upstream_request.model

            if self._upstream_client is None:
                raise ConfigurationError("Upstream API key is not configured")
            stream = await self._upstream_client.open_stream(upstream_request)
            await self._charge(identity, stream)
        except AppError as exc:
            self._log_gate(
                exc.code, exc.status_code, started, request_id, identity, model, exc.message
            )
            raise

        self._log_gate("accepted", 200, started, request_id, identity, model, None)
        return StreamRelay(
            stream,
            queue_size=self._settings.relay_queue_size,
            max_segment_bytes=self._settings.relay_max_segment_bytes,
            request_id=request_id,
            model=model,
            record_metrics=self._settings.metrics_enabled,
        )

    def readiness(self) -> dict[str, str]:
        return {
            "identity": self._settings.identity_backend_normalized,
            "ledger": self._settings.ledger_backend_normalized,
            "upstream": "ok" if self._upstream_client is not None else "unconfigured",
        }

    async def _read_profile(self, identity: UserIdentity) -> Profile:
        try:
            return await self._quota_ledger.read_profile(identity)
        except ProfileNotFoundError as exc:
            raise ProfileNotFound() from exc
        except LedgerBackendError as exc:
            raise LedgerError(f"Profile lookup failed: {exc}") from exc

    async def _charge(self, identity: UserIdentity, stream: UpstreamStream) -> None:
        try:
            await self._quota_ledger.increment_usage(identity)
        except LedgerBackendError as exc:
            await stream.aclose()
            raise LedgerError(
                f"Usage increment failed: {exc}", code="usage_increment_failed"
            ) from exc
        except BaseException:
            await stream.aclose()
            raise

    def _log_gate(
        self,
        outcome: str,
        status_code: int,
        started: float,
        request_id: str,
        identity: UserIdentity | None,
        model: str | None,
        error: str | None,
    ) -> None:
        latency_s = perf_counter() - started
        logger.log(
            logging.INFO if status_code < 500 else logging.WARNING,
            "chat_gate_decision",
            extra={
                "request_id": request_id,
                "user_id": identity.user_id if identity else None,
                "email": identity.email if identity else None,
                "model": model,
                "outcome": outcome,
                "status_code": status_code,
                "latency_ms": int(latency_s * 1000),
                "error": error,
            },
        )
        if self._settings.metrics_enabled:
            record_gate_outcome(outcome, status_code, latency_s)
