"""YAML/dict config loader for pii-annotator.

Supports loading from a YAML file or a plain dict (for embedding in a
larger application config).

Example YAML:

    pii_annotator:
      confidence_threshold: 0.7
      auto_refine_threshold: 2
      use_presidio: false
      language: en
      fuzzy_threshold: 0.8
      timeout: 10
      log_level: INFO
      store:
        backend: http            # "memory", "sqlite" or "http"
        url: http://127.0.0.1:18792
        path: ~/.pii-annotator/patterns.db
"""

from __future__ import annotations
from pathlib import Path
from typing import Any, Iterable

from .client import LocalStoreClient, PatternStoreClient
from .feedback_sqlite import SqliteFeedbackStore
from .feedback_store import FeedbackStore
from .logger import setup_logging
from .ml_layer import CompositeDetector, Detector, FuzzyDetector, PresidioDetector
from .session import AnnotationSession, Document
from .types import DEFAULT_CONFIDENCE_THRESHOLD, PatternDefinition

STORE_BACKENDS = ("memory", "sqlite", "http")


def load_config(data: dict[str, Any] | None) -> dict[str, Any]:
    """Normalize a config dict (from YAML or inline)."""
    data = data or {}
    # Support nested under "pii_annotator" key or flat
    if "pii_annotator" in data:
        data = data["pii_annotator"] or {}

    store = data.get("store") or {}
    backend = store.get("backend", "http" if data.get("store_url") or store.get("url") else "memory")
    if backend not in STORE_BACKENDS:
        raise ValueError(f"Unknown store backend {backend!r}; expected one of {STORE_BACKENDS}")

    return {
        "store_backend": backend,
        "store_url": data.get("store_url") or store.get("url"),
        "store_path": store.get("path", "patterns.db"),
        "timeout": float(data.get("timeout", 10.0)),
        "confidence_threshold": float(data.get("confidence_threshold", DEFAULT_CONFIDENCE_THRESHOLD)),
        "auto_refine_threshold": int(data.get("auto_refine_threshold", 2)),
        "use_presidio": bool(data.get("use_presidio", False)),
        "language": data.get("language", "en"),
        "fuzzy_threshold": float(data.get("fuzzy_threshold", 0.8)),
        "log_level": data.get("log_level", "INFO"),
    }


def load_from_yaml(path: str | Path) -> dict[str, Any]:
    """Load config from a YAML file."""
    import yaml
    with open(path) as f:
        return load_config(yaml.safe_load(f))


def create_store(cfg: dict[str, Any]) -> FeedbackStore:
    if cfg["store_backend"] == "sqlite":
        return SqliteFeedbackStore(
            db_path=cfg["store_path"],
            auto_refine_threshold=cfg["auto_refine_threshold"],
            default_threshold=cfg["confidence_threshold"],
        )
    return FeedbackStore(
        auto_refine_threshold=cfg["auto_refine_threshold"],
        default_threshold=cfg["confidence_threshold"],
    )


def create_client(cfg: dict[str, Any]) -> PatternStoreClient | LocalStoreClient:
    if cfg["store_backend"] == "http":
        if not cfg["store_url"]:
            raise ValueError("store backend 'http' needs store_url")
        return PatternStoreClient(cfg["store_url"], timeout=cfg["timeout"])
    return LocalStoreClient(create_store(cfg), fuzzy_threshold=cfg["fuzzy_threshold"])


def create_detector(
    cfg: dict[str, Any],
    client: PatternStoreClient | LocalStoreClient | None = None,
) -> Detector:
    """The remote store's detector when there is one, else local fuzzy (+ Presidio)."""
    if isinstance(client, PatternStoreClient):
        return client.test_pattern
    detectors: list[Detector] = [FuzzyDetector(threshold=cfg["fuzzy_threshold"])]
    if cfg["use_presidio"]:
        detectors.append(PresidioDetector(language=cfg["language"]))
    return CompositeDetector(detectors)


def create_session(
    config: dict[str, Any],
    documents: Iterable[Document],
    initial_patterns: Iterable[PatternDefinition] | None = None,
) -> AnnotationSession:
    """Create a fully wired annotation session from a config dict."""
    cfg = load_config(config) if "store_backend" not in config else config
    setup_logging(cfg["log_level"])
    client = create_client(cfg)
    return AnnotationSession(
        documents,
        store=client,
        detector=create_detector(cfg, client),
        initial_patterns=initial_patterns,
    )
