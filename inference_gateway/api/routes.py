from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from inference_gateway.core.errors import request_id_from_request
from inference_gateway.metrics import metrics_router
from inference_gateway.services.gateway_service import ChatGateway

router = APIRouter()
router.include_router(metrics_router)


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
def readyz(request: Request) -> dict[str, object]:
    gateway: ChatGateway = request.app.state.gateway
    dependencies = gateway.readiness()
    status = "ready" if dependencies.get("upstream") == "ok" else "degraded"
    return {"status": status, "dependencies": dependencies}


@router.post("/v1/chat")
@router.post("/functions/v1/gemini-chat")
async def chat(request: Request) -> StreamingResponse:
    gateway: ChatGateway = request.app.state.gateway
    relay = await gateway.handle_chat_stream(
        authorization=request.headers.get("authorization"),
        body=await request.body(),
        request_id=request_id_from_request(request),
    )
    return StreamingResponse(
        relay.frames(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
        background=BackgroundTask(relay.aclose),
    )
