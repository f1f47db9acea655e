"""PhaseKit - phase-aware context assembly and state transitions for AI-assisted projects."""

# No imports at package level to avoid circular import issues
# Import modules directly where needed

__version__ = "0.1.0"

__all__ = [
    "ProjectWorkflow",
    "ProjectState",
    "ProjectStateRecord",
    "ContextAssembler",
    "SessionUpdateProtocol",
    "DocumentStore",
    "KnowledgeIndex",
    "EngineConfig",
    "Workspace",
]
