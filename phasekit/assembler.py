"""Context assembly: which documents a session loads, and in what order.

Bundle order is fixed: master, phase, modules in critical-task order, then
knowledge references (phase-scoped first, then per module).
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional, Sequence, Tuple

from .config import EngineConfig
from .documents import DocumentStore
from .errors import DanglingIndexReferenceError, MissingMasterDocumentError, PhaseKitError
from .knowledge import KnowledgeIndex
from .models import ContextBundle, DocRef, ProjectState, TaskRef, is_document_id
from .phasekit_logging import log_context_assembled, log_performance

logger = logging.getLogger("phasekit.assembler")


def match_module(description: str, keyword_table: Sequence[Tuple[str, str]]) -> Optional[str]:
    """Map a task description to at most one module id.

    Keywords are tried in table order as case-insensitive whole words; the
    first hit wins.
    """
    for keyword, module in keyword_table:
        if re.search(rf"(?<!\w){re.escape(keyword)}(?!\w)", description, re.IGNORECASE):
            return module
    return None


def derive_module(task: TaskRef, keyword_table: Sequence[Tuple[str, str]]) -> Optional[str]:
    """Explicit module hint first, keyword table otherwise."""
    if task.module_hint:
        return task.module_hint
    return match_module(task.description, keyword_table)


def resolve_modules(tasks: Iterable[TaskRef], keyword_table: Sequence[Tuple[str, str]]) -> List[str]:
    """Module ids for ``tasks``, de-duplicated in first-seen order."""
    modules: List[str] = []
    for task in tasks:
        module = derive_module(task, keyword_table)
        if module and module not in modules:
            modules.append(module)
    return modules


class ContextAssembler:
    """Compose the :class:`ContextBundle` for the project's current phase."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    def _collect_refs(
        self,
        index: KnowledgeIndex,
        store: DocumentStore,
        queries: List[Tuple[str, str]],
        issues: List[PhaseKitError],
    ) -> List[DocRef]:
        refs: List[DocRef] = []
        seen = set()
        for dimension, key in queries:
            for ref in index.lookup(dimension, key):
                if ref.path in seen:
                    continue
                seen.add(ref.path)
                if store.resolve(ref.path) is None:
                    problem = DanglingIndexReferenceError(dimension, key, ref.path)
                    logger.warning(str(problem))
                    issues.append(problem)
                    continue
                refs.append(ref)
        return refs

    @log_performance("assemble_context")
    def assemble(self, state: ProjectState, index: KnowledgeIndex, store: DocumentStore) -> ContextBundle:
        """Build a fresh bundle for ``state``.

        Raises:
            MissingMasterDocumentError: If the master document is absent.
        """
        issues: List[PhaseKitError] = []

        master = store.get("master", self.config.master_document_id)
        if master is None:
            raise MissingMasterDocumentError(self.config.master_document_id)

        phase_body = store.get("phase", state.phase)
        if phase_body is None:
            logger.info(f"No phase document for '{state.phase}' yet, using an empty placeholder")
            phase_body = ""

        module_ids = resolve_modules(state.tier(self.config.critical_tier), self.config.module_keywords)
        loaded_ids: List[str] = []
        bodies: List[str] = []
        missing: List[str] = []
        for module_id in module_ids:
            if not is_document_id(module_id):
                logger.warning(f"Module id {module_id!r} cannot name a document, omitting it from the bundle")
                missing.append(module_id)
                continue
            body = store.get("module", module_id)
            if body is None:
                logger.warning(f"Module document '{module_id}' not found, omitting it from the bundle")
                missing.append(module_id)
                continue
            loaded_ids.append(module_id)
            bodies.append(body)

        queries = [("phase", state.phase)] + [("module", module_id) for module_id in module_ids]
        refs = self._collect_refs(index, store, queries, issues)

        bundle = ContextBundle(
            master=master,
            phase=phase_body,
            phase_id=state.phase,
            modules=bodies,
            module_ids=loaded_ids,
            missing_modules=missing,
            knowledge_refs=refs,
            issues=issues,
        )
        log_context_assembled(state.phase, loaded_ids, len(issues), missing_modules=missing)
        return bundle
