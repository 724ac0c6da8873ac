"""Request pipeline: authorize, bound, execute, explain, audit."""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from query_gateway.agents.query_executor import QueryExecutor, stringify_ids
from query_gateway.agents.query_translator import QueryTranslator
from query_gateway.errors import AccessDeniedError, AnalysisError, GatewayError, QueryValidationError
from query_gateway.models.permissions import Principal
from query_gateway.services.audit_service import QUERY_EXECUTION, QUERY_GENERATION, AuditRecorder, AuditService
from query_gateway.services.explanation_service import ExplanationService
from query_gateway.services.permission_store import PermissionStore, has_collection_access
from query_gateway.services.timeout_guard import GatewayResponse, TimeoutGuard
from query_gateway.utils.logging_utils import get_logger
from query_gateway.utils.query_optimizer import prepare_mql
from query_gateway.utils.validators import (
    is_query_safe,
    sanitize_query,
    validate_mql_safety,
    validate_natural_query,
)

logger = get_logger("gateway")


@dataclass
class RequestContext:
    """What the audit entry needs to know about a request, filled in as it progresses."""

    principal: Principal
    text: str
    collection: str
    resolved_query: Any = None
    raw_response: Any = None
    token_count: int = 0


class QueryGateway:
    def __init__(
        self,
        permissions: PermissionStore,
        guard: TimeoutGuard,
        audit: AuditService,
        translator: QueryTranslator,
        executor: QueryExecutor,
        explanations: ExplanationService,
        default_limit: int = 100,
    ):
        self.permissions = permissions
        self.guard = guard
        self.audit = audit
        self.translator = translator
        self.executor = executor
        self.explanations = explanations
        self.default_limit = default_limit

    def authorize(self, principal: Principal, text: str, collection: str) -> str:
        """Validate text and access for an authenticated principal; returns the sanitized text."""
        text = sanitize_query(text)
        is_valid, error_msg = validate_natural_query(text)
        if not is_valid:
            raise QueryValidationError(f"Invalid query: {error_msg}")
        if not has_collection_access(principal.grant, collection):
            raise AccessDeniedError("Access denied to this collection", detail={"collection": collection})
        if not is_query_safe(text, principal.role):
            raise AccessDeniedError("Query contains restricted operations")
        return text

    async def handle(self, token: str, text: str, collection: str) -> GatewayResponse:
        # AuthError propagates: without a subject there is nothing to audit
        principal = self.permissions.resolve_principal(token)
        recorder = self.audit.start_tracking()
        context = RequestContext(principal=principal, text=text, collection=collection)

        try:
            context.text = self.authorize(principal, text, collection)
        except GatewayError as e:
            self._log(recorder, context, e)
            raise

        response = await self.guard.run(principal.role, lambda: self._proceed(recorder, context))

        error = response.body if response.status_code >= 400 else None
        self._log(recorder, context, error)
        return response

    async def _proceed(self, recorder: AuditRecorder, context: RequestContext) -> GatewayResponse:
        try:
            translation = await self.translator.translate(context.text, context.collection)
            recorder.mark_checkpoint(QUERY_GENERATION)
            context.raw_response = translation.raw_response
            context.token_count = translation.token_count

            is_safe, reason = validate_mql_safety(translation.resolved_query)
            if not is_safe:
                context.resolved_query = translation.resolved_query
                raise AccessDeniedError(f"Query safety violation: {reason}")

            mql = prepare_mql(translation.resolved_query, default_limit=self.default_limit)
            context.resolved_query = mql
            results = await self.executor.execute(mql, context.collection)
            recorder.mark_checkpoint(QUERY_EXECUTION)
        except GatewayError as e:
            return GatewayResponse(e.status_code, e.to_dict())
        except Exception as e:
            logger.exception("Query execution failed")
            return GatewayResponse(500, {"error": f"Error executing query: {e}", "code": "EXECUTION_FAILED"})

        explanation = await self._explain(context.text, mql, context.collection)
        return GatewayResponse(200, {
            "success": True,
            "collection": context.collection,
            "mql_query": stringify_ids(mql),
            "results": results,
            "result_count": len(results),
            "explanation": explanation,
        })

    async def _explain(self, text: str, mql: Dict[str, Any], collection: str) -> Optional[Dict[str, Any]]:
        """Explanations are best-effort: a failed analysis never fails the query."""
        try:
            record = await self.explanations.explain_query(text, mql, collection)
        except AnalysisError as e:
            logger.warning("Explanation skipped: %s", e)
            return None
        return record.model_dump(by_alias=True, mode="json")

    def _log(self, recorder: AuditRecorder, context: RequestContext, error: Any) -> None:
        recorder.log_query(
            subject_id=context.principal.subject_id,
            role=context.principal.role,
            natural_language_query=context.text,
            resolved_query=context.resolved_query,
            raw_response=context.raw_response,
            collection=context.collection,
            token_count=context.token_count,
            error=error,
        )
