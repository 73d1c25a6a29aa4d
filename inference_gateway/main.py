import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from inference_gateway.api.routes import router
from inference_gateway.config.settings import Settings, get_settings
from inference_gateway.core.errors import AppError, app_error_response, request_id_from_request
from inference_gateway.core.logging import configure_logging
from inference_gateway.identity.resolver import (
    IdentityResolver,
    StaticTokenIdentityResolver,
    SupabaseIdentityResolver,
)
from inference_gateway.middleware.request_id import RequestIDMiddleware
from inference_gateway.quota.ledger import InMemoryQuotaLedger, QuotaLedger, SupabaseQuotaLedger
from inference_gateway.services.gateway_service import ChatGateway
from inference_gateway.upstream.gemini import GeminiStreamClient

CORS_ALLOW_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]


def _build_identity_resolver(settings: Settings) -> IdentityResolver:
    backend = settings.identity_backend_normalized
    if backend == "static":
        return StaticTokenIdentityResolver(settings.static_token_map)
    if backend == "supabase":
        if not settings.supabase_url or not settings.supabase_anon_key:
            raise RuntimeError(
                "IGW_SUPABASE_URL and IGW_SUPABASE_ANON_KEY are required when "
                "identity_backend=supabase"
            )
        return SupabaseIdentityResolver(
            base_url=settings.supabase_url,
            anon_key=settings.supabase_anon_key,
            timeout_s=settings.supabase_timeout_s,
        )
    raise RuntimeError(f"Unsupported IGW_IDENTITY_BACKEND value: {backend}")


def _build_quota_ledger(settings: Settings) -> QuotaLedger:
    backend = settings.ledger_backend_normalized
    if backend == "memory":
        return InMemoryQuotaLedger(
            default_limit=settings.ledger_default_limit,
            profiles=settings.ledger_seed_profile_map,
        )
    if backend == "supabase":
        if not settings.supabase_url or not settings.supabase_service_role_key:
            raise RuntimeError(
                "IGW_SUPABASE_URL and IGW_SUPABASE_SERVICE_ROLE_KEY are required when "
                "ledger_backend=supabase"
            )
        return SupabaseQuotaLedger(
            base_url=settings.supabase_url,
            service_role_key=settings.supabase_service_role_key,
            timeout_s=settings.supabase_timeout_s,
        )
    raise RuntimeError(f"Unsupported IGW_LEDGER_BACKEND value: {backend}")


def _build_upstream_client(
    settings: Settings, transport: httpx.AsyncBaseTransport | None
) -> GeminiStreamClient | None:
    if not settings.gemini_api_key:
        return None
    stream_format = settings.upstream_stream_format_normalized
    if stream_format not in {"json", "sse"}:
        raise RuntimeError(f"Unsupported IGW_UPSTREAM_STREAM_FORMAT value: {stream_format}")
    return GeminiStreamClient(
        api_key=settings.gemini_api_key,
        base_url=settings.gemini_base_url,
        stream_format=stream_format,
        connect_timeout_s=settings.upstream_connect_timeout_s,
        read_timeout_s=settings.upstream_read_timeout_s,
        transport=transport,
    )


def create_app(
    settings: Settings | None = None,
    *,
    identity_resolver: IdentityResolver | None = None,
    quota_ledger: QuotaLedger | None = None,
    upstream_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="Inference Gateway", version="0.1.0")

    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origin_list,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=CORS_ALLOW_HEADERS,
        expose_headers=["x-request-id"],
    )

    gateway = ChatGateway(
        settings=settings,
        identity_resolver=identity_resolver or _build_identity_resolver(settings),
        quota_ledger=quota_ledger or _build_quota_ledger(settings),
        upstream_client=_build_upstream_client(settings, upstream_transport),
    )
    app.state.settings = settings
    app.state.gateway = gateway

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        request_id = request_id_from_request(request)
        return app_error_response(exc.status_code, exc.code, exc.message, request_id)

    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        request_id = request_id_from_request(request)
        return app_error_response(500, "invalid_request_body", str(exc), request_id)

    @app.exception_handler(Exception)
    async def unhandled_handler(request: Request, _: Exception) -> JSONResponse:
        request_id = request_id_from_request(request)
        return app_error_response(500, "internal_error", "Internal server error", request_id)

    app.include_router(router)
    return app


app = create_app()
