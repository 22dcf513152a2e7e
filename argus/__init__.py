"""Argus: recursive analysis of codebase snapshots too large for a context window.

The snapshot (every source file concatenated into one text file) is never sent
to the model. Instead the model explores it turn by turn with Nucleus, a small
deterministic S-expression query language, and only sees truncated results.

Public API is intentionally small; most users will use the CLI:

    argus ask --snapshot .argus/snapshot.txt --question "How does auth work?"

"""

from .cache import NotFoundError, SnapshotCache
from .engine import AnalysisResult, ArgusConfig, ArgusEngine, analyze
from .metadata import SnapshotMetadata, extract_metadata
from .nucleus import Environment, NucleusError, NucleusInterpreter
from .prompts import select_prompt
from .providers import CompletionResult, LiteLLMClient, LLMClient, ProviderError
from .snapshot import SnapshotDocument, parse_snapshot

__all__ = [
    "AnalysisResult",
    "ArgusConfig",
    "ArgusEngine",
    "CompletionResult",
    "Environment",
    "LiteLLMClient",
    "LLMClient",
    "NotFoundError",
    "NucleusError",
    "NucleusInterpreter",
    "ProviderError",
    "SnapshotCache",
    "SnapshotDocument",
    "SnapshotMetadata",
    "analyze",
    "extract_metadata",
    "parse_snapshot",
    "select_prompt",
]
