from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime
import uvicorn
from contextlib import asynccontextmanager

from query_gateway.bootstrap import Services, build_services
from query_gateway.config import settings
from query_gateway.errors import AccessDeniedError, GatewayError, InvalidTokenError
from query_gateway.models.permissions import Principal, Role
from query_gateway.services.permission_store import has_collection_access
from query_gateway.agents.query_executor import stringify_ids


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events"""
    # Startup
    print("\n" + "=" * 60)
    print("Starting Natural Language Query Gateway")
    print("=" * 60)
    print(f"Database: {settings.database_name}")
    print(f"LLM Provider: {settings.llm_provider}")
    print("=" * 60 + "\n")

    # Tests pre-populate app.state.services with in-memory collaborators
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(settings)

    yield

    # Shutdown
    services: Services = app.state.services
    await services.audit.drain()
    close = getattr(services.store, "close", None)
    if close is not None:
        await close()
    print("\nQuery Gateway shutting down\n")


# Create FastAPI app
app = FastAPI(
    title="Natural Language Query Gateway",
    description="Governed natural language access to MongoDB with query explanations and audit",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify exact origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Pydantic models
class QueryRequest(BaseModel):
    query: str = Field(..., description="Natural language query", min_length=1)
    collection: str = Field(..., description="Target collection", min_length=1)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "query": "Find queries created after 2024-01-01 with more than 5 results",
                "collection": "queries",
            }
        }
    )


class HealthResponse(BaseModel):
    status: str
    service: str
    llm_provider: str
    llm_model: str
    database: str


def _services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Gateway not initialized")
    return services


def _bearer_token(request: Request) -> str:
    header = request.headers.get("authorization", "")
    parts = header.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1]:
        raise InvalidTokenError("No token provided")
    return parts[1]


def _principal(request: Request) -> Principal:
    return _services(request).permissions.resolve_principal(_bearer_token(request))


def _is_admin(principal: Principal) -> bool:
    return principal.role == Role.ADMIN.value


# Routes
@app.get("/", tags=["Root"])
async def root():
    """Root endpoint"""
    return {
        "service": "Natural Language Query Gateway",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "health": "/health",
            "query": "/query (POST)",
            "explanation": "/explanations/{query_id}",
            "audit": "/audit/stats, /audit/recent, /audit/metrics",
            "docs": "/docs"
        }
    }


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(request: Request):
    """Health check endpoint"""
    services = _services(request)
    return {
        "status": "healthy",
        "service": "Natural Language Query Gateway",
        "llm_provider": services.llm_metadata.get("provider", "unknown"),
        "llm_model": services.llm_metadata.get("model", "unknown"),
        "database": settings.database_name
    }


@app.post("/query", tags=["Query"])
async def run_query(payload: QueryRequest, request: Request):
    """
    Authorize, translate, execute and explain a natural language query.
    """
    services = _services(request)
    response = await services.gateway.handle(_bearer_token(request), payload.query, payload.collection)
    return JSONResponse(status_code=response.status_code, content=response.body)


@app.get("/explanations/{query_id}", tags=["Explanation"])
async def get_explanation(query_id: str, request: Request):
    """Fetch a stored query explanation."""
    principal = _principal(request)
    record = await _services(request).explanations.get_explanation(query_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Explanation not found")
    if not has_collection_access(principal.grant, record.metadata.collection):
        raise AccessDeniedError("Access denied to this collection")
    return record.model_dump(by_alias=True, mode="json")


@app.get("/audit/stats", tags=["Audit"])
async def audit_stats(request: Request):
    """Aggregate statistics; non-admin callers only see their own."""
    principal = _principal(request)
    subject = None if _is_admin(principal) else principal.subject_id
    return await _services(request).audit.get_query_stats(subject)


@app.get("/audit/recent", tags=["Audit"])
async def audit_recent(request: Request, limit: int = Query(10, ge=1, le=100)):
    """Most recent audit entries, newest first."""
    principal = _principal(request)
    subject = None if _is_admin(principal) else principal.subject_id
    entries = await _services(request).audit.get_recent_queries(subject, limit)
    return {"entries": stringify_ids(entries)}


@app.get("/audit/metrics", tags=["Audit"])
async def audit_metrics(request: Request, start: datetime, end: datetime):
    """Per-day performance rollup. Admin only."""
    principal = _principal(request)
    if not _is_admin(principal):
        raise AccessDeniedError("Performance metrics are restricted to administrators")
    return {"metrics": await _services(request).audit.get_performance_metrics(start, end)}


# Run server
if __name__ == "__main__":
    uvicorn.run(
        "query_gateway.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=True,
        log_level=settings.log_level.lower()
    )
