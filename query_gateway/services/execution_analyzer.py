from typing import Any, Dict, List, Optional

from query_gateway.errors import AnalysisError
from query_gateway.models.explanation import Complexity, ExecutionAnalysis, UsedIndex
from query_gateway.services.document_store import DocumentStore
from query_gateway.utils.logging_utils import get_logger

logger = get_logger("analyzer")


def index_kind(index: Dict[str, Any]) -> str:
    """First matching flag wins: unique, then sparse, then background."""
    if index.get("unique"):
        return "UNIQUE"
    if index.get("sparse"):
        return "SPARSE"
    if index.get("background"):
        return "BACKGROUND"
    return "STANDARD"


def index_efficiency(stats: Optional[Dict[str, Any]]) -> float:
    """
    Documents returned per document examined, capped at 1.

    Index scan stages report keys examined rather than documents, so that
    count stands in when no document count is present.
    """
    if not stats:
        return 0.0
    examined = stats.get("totalDocsExamined", stats.get("docsExamined", stats.get("keysExamined", 0))) or 0
    returned = stats.get("nReturned", 0) or 0
    if examined == 0:
        return 1.0
    return min(returned / examined, 1.0)


def classify_complexity(documents_examined: int, collection_count: int) -> str:
    """Coarse ordinal class, not an asymptotic bound."""
    if documents_examined == 0:
        return "O(1)"
    if documents_examined < collection_count:
        return "O(log n)"
    return "O(n)"


def planner_section(explain_output: Dict[str, Any]) -> Dict[str, Any]:
    """Locate queryPlanner/executionStats; aggregate explains nest them under the first $cursor stage."""
    if "queryPlanner" in explain_output:
        return explain_output
    for stage in explain_output.get("stages") or []:
        if isinstance(stage, dict) and "$cursor" in stage:
            return stage["$cursor"]
    raise AnalysisError("Explain output has no query plan")


def winning_plan_tree(section: Dict[str, Any]) -> Dict[str, Any]:
    """The slot-based engine nests the classic plan tree under ``winningPlan.queryPlan``."""
    winning_plan = (section.get("queryPlanner") or {}).get("winningPlan") or {}
    return winning_plan.get("queryPlan", winning_plan)


def _child_stages(stage: Dict[str, Any]) -> List[Any]:
    children = [stage[key] for key in ("inputStage", "outerStage", "innerStage") if key in stage]
    return children + list(stage.get("inputStages") or [])


def index_stage_stats(execution_stages: Optional[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """Runtime stats of each index stage in ``executionStats.executionStages``, first occurrence per name."""
    found: Dict[str, Dict[str, Any]] = {}

    def visit(stage: Any) -> None:
        if not isinstance(stage, dict):
            return
        name = stage.get("indexName")
        if name and name not in found:
            found[name] = stage
        for child in _child_stages(stage):
            visit(child)

    visit(execution_stages)
    return found


class ExecutionAnalyzer:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def analyze_execution(self, resolved_query: Any, collection: str) -> ExecutionAnalysis:
        try:
            total_docs = await self.store.count_documents(collection)
            indexes = await self.store.list_indexes(collection)
            explain_output = await self.store.explain(collection, resolved_query, verbosity="executionStats")
        except AnalysisError:
            raise
        except Exception as e:
            raise AnalysisError(f"Execution analysis failed for '{collection}': {e}") from e

        section = planner_section(explain_output)
        stats = section.get("executionStats") or {}
        winning_plan = winning_plan_tree(section)

        used_indexes = self.analyze_used_indexes(winning_plan, indexes, stats)
        documents_examined = stats.get("totalDocsExamined", 0) or 0

        return ExecutionAnalysis(
            used_indexes=used_indexes,
            complexity=Complexity(
                time_complexity=classify_complexity(documents_examined, total_docs),
                documents_examined=documents_examined,
                indexes_used=len(used_indexes),
            ),
            execution_stats=_summary(stats),
        )

    def analyze_used_indexes(
        self,
        winning_plan: Dict[str, Any],
        available_indexes: List[Dict[str, Any]],
        plan_stats: Optional[Dict[str, Any]] = None,
    ) -> List[UsedIndex]:
        """
        Walk the plan from the root, visiting input stages before the node
        itself, so indexes come out leaf first.

        Efficiency comes from the node's own stats, then the matching stage in
        ``executionStages``, then the plan totals. A plan that examined no
        documents rates every index at 1.
        """
        catalog = {index.get("name"): index for index in available_indexes}
        runtime = index_stage_stats((plan_stats or {}).get("executionStages"))
        nothing_examined = (plan_stats or {}).get("totalDocsExamined") == 0
        used: List[UsedIndex] = []

        def visit(stage: Dict[str, Any]) -> None:
            if not isinstance(stage, dict):
                return
            if "inputStage" in stage:
                visit(stage["inputStage"])
            for child in stage.get("inputStages") or []:
                visit(child)

            name = stage.get("indexName")
            if not name:
                return
            index = catalog.get(name)
            if index is None:
                logger.debug("Plan references index %s missing from the catalog", name)
                return
            used.append(UsedIndex(
                name=name,
                key_spec=dict(index.get("key") or {}),
                kind=index_kind(index),
                efficiency=(
                    1.0 if nothing_examined
                    else index_efficiency(stage.get("executionStats") or runtime.get(name) or plan_stats)
                ),
            ))

        visit(winning_plan)
        return used


def _summary(stats: Dict[str, Any]) -> Dict[str, Any]:
    keep = ("nReturned", "executionTimeMillis", "totalKeysExamined", "totalDocsExamined", "executionSuccess")
    return {key: stats[key] for key in keep if key in stats}
