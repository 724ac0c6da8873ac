from dataclasses import dataclass
from typing import Optional

from query_gateway.agents.query_executor import QueryExecutor
from query_gateway.agents.query_translator import QueryTranslator
from query_gateway.config import Settings
from query_gateway.services.audit_service import AuditService
from query_gateway.services.document_store import DocumentStore, MongoDocumentStore
from query_gateway.services.execution_analyzer import ExecutionAnalyzer
from query_gateway.services.explanation_service import ExplanationService
from query_gateway.services.gateway import QueryGateway
from query_gateway.services.llm_service import create_llm
from query_gateway.services.permission_store import PermissionStore
from query_gateway.services.query_interpreter import QueryInterpreter
from query_gateway.services.suggestion_engine import SuggestionEngine
from query_gateway.services.timeout_guard import TimeoutGuard
from query_gateway.services.token_verifier import JwtTokenVerifier, TokenVerifier


@dataclass
class Services:
    """Everything a request handler needs, built once at process start."""

    store: DocumentStore
    permissions: PermissionStore
    audit: AuditService
    explanations: ExplanationService
    gateway: QueryGateway
    llm_metadata: dict


def build_services(
    settings: Settings,
    store: Optional[DocumentStore] = None,
    verifier: Optional[TokenVerifier] = None,
    llm=None,
    llm_metadata: Optional[dict] = None,
) -> Services:
    if store is None:
        store = MongoDocumentStore(settings.mongodb_uri, settings.database_name)
    if verifier is None:
        verifier = JwtTokenVerifier(settings.jwt_secret, [settings.jwt_algorithm])
    if llm is None and llm_metadata is None:
        llm, llm_metadata = create_llm(settings)

    permissions = PermissionStore(
        verifier,
        capacity=settings.permission_cache_size,
        ttl_seconds=settings.permission_cache_ttl_seconds,
    )
    audit = AuditService(store, collection=settings.audit_collection)
    explanations = ExplanationService(
        store,
        QueryInterpreter(),
        ExecutionAnalyzer(store),
        SuggestionEngine(store, explanation_collection=settings.explanation_collection),
        collection=settings.explanation_collection,
    )
    gateway = QueryGateway(
        permissions=permissions,
        guard=TimeoutGuard(cancel_on_timeout=settings.cancel_on_timeout),
        audit=audit,
        translator=QueryTranslator(store, llm=llm, llm_metadata=llm_metadata),
        executor=QueryExecutor(store),
        explanations=explanations,
        default_limit=settings.default_result_limit,
    )
    return Services(
        store=store,
        permissions=permissions,
        audit=audit,
        explanations=explanations,
        gateway=gateway,
        llm_metadata=llm_metadata or {},
    )
