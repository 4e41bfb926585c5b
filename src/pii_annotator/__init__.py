"""PII Annotator — learn, match and highlight sensitive-data patterns from tagged examples."""

from .learner import learn, relearn
from .matcher import find_matches
from .refinement import apply_refinement
from .renderer import render, highlight
from .feedback_store import FeedbackStore
from .feedback_sqlite import SqliteFeedbackStore
from .client import PatternStoreClient, LocalStoreClient
from .session import AnnotationSession, Document
from .config import create_session, load_config, load_from_yaml
from .errors import AnnotatorError, LearningError, PatternStoreError, FeedbackNotAllowed
from .types import (
    PatternDefinition, PatternType, RefinedPatternDefinition,
    MatchSpan, MLMatch, FeedbackRecord, FeedbackType,
)

__all__ = [
    "learn", "relearn",
    "find_matches", "apply_refinement",
    "render", "highlight",
    "FeedbackStore", "SqliteFeedbackStore",
    "PatternStoreClient", "LocalStoreClient",
    "AnnotationSession", "Document",
    "create_session", "load_config", "load_from_yaml",
    "AnnotatorError", "LearningError", "PatternStoreError", "FeedbackNotAllowed",
    "PatternDefinition", "PatternType", "RefinedPatternDefinition",
    "MatchSpan", "MLMatch", "FeedbackRecord", "FeedbackType",
]
__version__ = "0.1.0"
