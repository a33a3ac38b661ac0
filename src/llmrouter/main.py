import logging

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import make_asgi_app

from llmrouter.api.generate import router as generate_router
from llmrouter.api.health import router as health_router
from llmrouter.config import settings
from llmrouter.errors import ValidationError
from llmrouter.gateway import ModelGateway
from llmrouter.registry import ProviderRegistry, register_default_factories
from llmrouter.router import ProviderRouter

# ---------------------------------------------------------------------------
# Structured logging
# ---------------------------------------------------------------------------
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        structlog.stdlib.NAME_TO_LEVEL.get(settings.log_level.lower(), 20)
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

# httpx logs full request URLs, and the Gemini key travels as a query parameter.
logging.getLogger("httpx").setLevel(logging.WARNING)

log = structlog.get_logger()

# ---------------------------------------------------------------------------
# OpenTelemetry
# ---------------------------------------------------------------------------
resource = Resource.create({"service.name": settings.otel_service_name})
tracer_provider = TracerProvider(resource=resource)
otlp_exporter = OTLPSpanExporter(
    endpoint=f"{settings.otel_exporter_otlp_endpoint}/v1/traces",
)
tracer_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
trace.set_tracer_provider(tracer_provider)

# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------
app = FastAPI(
    title="LLM Router",
    version=settings.app_version,
    description=(
        "Routes canonical generate requests to Ollama, OpenAI, Gemini or "
        "Google Cloud and normalises their streamed responses."
    ),
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Prometheus metrics endpoint mounted as a sub-application
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# Routers
app.include_router(health_router)
app.include_router(generate_router)

# Instrument *after* routes are registered
FastAPIInstrumentor.instrument_app(app, tracer_provider=tracer_provider)


# ---------------------------------------------------------------------------
# Lifecycle events
# ---------------------------------------------------------------------------
@app.on_event("startup")
async def _startup() -> None:
    # Build the registry from settings and attach the gateway to app state so
    # the get_gateway() dependency can inject it into every request handler.
    registry = register_default_factories(ProviderRegistry())
    for config in settings.provider_configurations():
        try:
            registry.register_provider(config.name, config)
        except ValidationError as exc:
            log.error(
                "provider_skipped",
                name=config.name,
                provider_type=config.type,
                field=exc.field,
                error=exc.message,
            )

    app.state.registry = registry
    app.state.default_model = settings.default_model
    app.state.gateway = ModelGateway(
        ProviderRouter(registry, default_provider=settings.default_provider),
        web_search_allow_all_providers=settings.web_search_allow_all_providers,
    )

    log.info(
        "LLM Router ready",
        host=settings.host,
        port=settings.port,
        providers=registry.list_providers(),
        default_provider=settings.default_provider,
        otel_endpoint=settings.otel_exporter_otlp_endpoint,
    )


@app.on_event("shutdown")
async def _shutdown() -> None:
    log.info("LLM Router shutting down")
    registry: ProviderRegistry | None = getattr(app.state, "registry", None)
    if registry is not None:
        await registry.aclose()
    tracer_provider.shutdown()
