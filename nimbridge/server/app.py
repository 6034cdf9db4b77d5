"""FastAPI application exposing the OpenAI-compatible surface."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from nimbridge import __version__
from nimbridge.chat.commands import CommandHandler
from nimbridge.chat.identity import ChatIdentityResolver
from nimbridge.chat.pipeline import ChatPipeline, ChatPipelineDeps
from nimbridge.chat.prompt import PromptAssembler
from nimbridge.chat.retry import RetryController
from nimbridge.chat.sanitizer import MessageSanitizer
from nimbridge.config.schema import Config
from nimbridge.errors import InvalidRequestError, NimbridgeError
from nimbridge.logging import get_logger
from nimbridge.memory.scheduler import SummarizationScheduler
from nimbridge.memory.store import MemoryStore, build_memory_store
from nimbridge.memory.summarizer import Summarizer
from nimbridge.providers.base import LLMProvider
from nimbridge.providers.models import ModelRegistry
from nimbridge.providers.nim import NimProvider

logger = get_logger(__name__)

_SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


def build_pipeline(
    config: Config,
    *,
    provider: LLMProvider | None = None,
    store: MemoryStore | None = None,
) -> ChatPipeline:
    """Wire every component from *config*; provider and store may be injected."""
    up = config.upstream
    provider = provider or NimProvider(
        api_key=up.resolved_api_key or None,
        api_base=up.api_base,
        timeout=up.timeout,
        thinking_mode=up.thinking_mode,
    )
    store = store or build_memory_store(config.memory)
    sc = config.summarization
    summarizer = Summarizer(
        provider,
        temperature=sc.temperature,
        summary_max_tokens=sc.summary_max_tokens,
        scene_max_tokens=sc.scene_max_tokens,
        max_input_chars=sc.max_input_chars,
    )
    deps = ChatPipelineDeps(
        provider=provider,
        store=store,
        identity=ChatIdentityResolver(
            header=config.identity.header,
            body_fields=config.identity.body_fields,
            referer_pattern=config.identity.referer_pattern,
            required=config.identity.required,
        ),
        sanitizer=MessageSanitizer(
            max_message_chars=config.sanitizer.max_message_chars,
            max_window=config.sanitizer.max_window,
        ),
        scheduler=SummarizationScheduler(
            store,
            summarizer,
            trigger_threshold=sc.trigger_threshold,
            cooldown=sc.cooldown,
            keep_recent=sc.keep_recent,
            scene_window=sc.scene_window,
            enabled=sc.enabled,
        ),
        assembler=PromptAssembler(),
        retry=RetryController(
            provider,
            max_retries=config.retry.max_retries,
            min_response_words=config.retry.min_response_words,
            temperature_step=config.retry.temperature_step,
            max_temperature=config.retry.max_temperature,
            enabled=config.retry.enabled,
        ),
        commands=CommandHandler(store),
        models=ModelRegistry(up.model_aliases),
    )
    return ChatPipeline(
        deps,
        default_temperature=up.default_temperature,
        max_tokens_cap=up.max_tokens_cap,
        show_reasoning=config.stream.show_reasoning,
        summarization_model=sc.model,
    )


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"message": message, "type": "invalid_request_error", "code": status_code}},
    )


def create_app(config: Config | None = None, *, pipeline: ChatPipeline | None = None) -> FastAPI:
    config = config or Config()
    pipeline = pipeline or build_pipeline(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Server starting",
            service=config.server.service_name,
            port=config.server.port,
            memory_backend=pipeline.deps.store.backend.name,
            reasoning_display=config.stream.show_reasoning,
            thinking_mode=config.upstream.thinking_mode,
        )
        yield
        await pipeline.deps.provider.aclose()
        client = getattr(pipeline.deps.store.backend, "client", None)
        if client is not None:
            await client.aclose()
        logger.info("Server stopped")

    app = FastAPI(title=config.server.service_name, version=__version__, lifespan=lifespan)
    app.state.pipeline = pipeline
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(NimbridgeError)
    async def _nimbridge_error(request: Request, exc: NimbridgeError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Proxy error")
        return _error_response(500, str(exc) or "Internal server error")

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "service": config.server.service_name,
            "reasoning_display": config.stream.show_reasoning,
            "thinking_mode": config.upstream.thinking_mode,
            "memory_backend": pipeline.deps.store.backend.name,
        }

    @app.get("/v1/models")
    async def list_models() -> dict[str, Any]:
        created = int(time.time())
        return {
            "object": "list",
            "data": [
                {"id": name, "object": "model", "created": created, "owned_by": "nvidia-nim-proxy"}
                for name in pipeline.deps.models.names()
            ],
        }

    @app.post("/v1/chat/completions")
    async def chat_completions(request: Request):
        try:
            body = await request.json()
        except ValueError as e:
            raise InvalidRequestError("Request body is not valid JSON") from e
        try:
            outcome = await pipeline.handle(body, request.headers)
        except NimbridgeError as e:
            logger.error("Proxy error", status=e.status_code, error=e.message)
            raise
        if outcome.stream is not None:
            return StreamingResponse(outcome.stream, media_type="text/event-stream", headers=_SSE_HEADERS)
        return JSONResponse(content=outcome.payload)

    @app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
    async def not_found(path: str) -> JSONResponse:
        return _error_response(404, f"Endpoint /{path} not found")

    return app
