"""HTTP sidecar server for the pii-annotator pattern store.

Runs as a lightweight framework-less HTTP server on localhost so an
annotation UI (or PatternStoreClient) can save patterns, submit feedback
and fetch refinements.

Endpoints:
    GET  /health                                       — Health check
    POST /api/patterns                                 — Save patterns, issuing ids
    GET  /api/patterns/refined[?patternId=...]         — Refinement data
    POST /api/patterns/feedback                        — Submit a feedback record
    GET  /api/patterns/feedback/refinements?patternId= — Analysis + suggestions
    POST /api/patterns/test                            — Rule + fuzzy detection

All endpoints expect/return JSON.
"""

from __future__ import annotations
import json
import os
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlsplit

from .client import detect_for_pattern
from .feedback_sqlite import SqliteFeedbackStore
from .feedback_store import FeedbackStore
from .logger import get_logger, setup_logging
from .ml_layer import FuzzyDetector
from .types import FeedbackRecord, PatternDefinition

logger = get_logger(__name__)

DEFAULT_PORT = int(os.environ.get("PII_ANNOTATOR_PORT", "18792"))
DEFAULT_DB = os.environ.get(
    "PII_ANNOTATOR_DB",
    str(Path.home() / ".pii-annotator" / "patterns.db"),
)

# Shared state
_store: FeedbackStore | None = None
_fuzzy = FuzzyDetector()


def _get_store() -> FeedbackStore:
    global _store
    if _store is None:
        _store = SqliteFeedbackStore(db_path=DEFAULT_DB)
    return _store


class PatternStoreHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the pattern store sidecar."""

    def _read_json(self) -> Any:
        length = int(self.headers.get("Content-Length", 0))
        body = self.rfile.read(length).decode("utf-8")
        return json.loads(body) if body else {}

    def _respond(self, status: int, data: Any) -> None:
        body = json.dumps(data, ensure_ascii=False).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("%s - " + format, self.address_string(), *args)

    def do_GET(self) -> None:
        url = urlsplit(self.path)
        query = parse_qs(url.query)
        pattern_id = query.get("patternId", [None])[0]
        store = _get_store()

        try:
            if url.path == "/health":
                self._respond(200, {"status": "ok", "patterns": len(store.list_patterns())})

            elif url.path == "/api/patterns/refined":
                if pattern_id:
                    refined = store.get_refined(pattern_id)
                    if refined is None:
                        self._respond(404, {"error": f"Pattern {pattern_id} not found"})
                    else:
                        self._respond(200, refined.to_dict())
                else:
                    self._respond(200, [rp.to_dict() for rp in store.all_refined().values()])

            elif url.path == "/api/patterns/feedback/refinements":
                if not pattern_id:
                    self._respond(400, {"error": "patternId is required"})
                    return
                report = store.refinement_report(pattern_id)
                if report is None:
                    self._respond(404, {"error": f"Pattern {pattern_id} not found"})
                else:
                    self._respond(200, report)

            else:
                self._respond(404, {"error": "not found"})

        except Exception as e:
            logger.exception("GET %s failed", self.path)
            self._respond(500, {"error": str(e)})

    def do_POST(self) -> None:
        url = urlsplit(self.path)
        store = _get_store()

        try:
            body = self._read_json()

            if url.path == "/api/patterns":
                patterns = [PatternDefinition.from_dict(p) for p in body.get("patterns", [])]
                saved = store.save_patterns(patterns)
                self._respond(200, {"patterns": [p.to_dict() for p in saved]})

            elif url.path == "/api/patterns/feedback":
                try:
                    record = FeedbackRecord.from_dict(body)
                    store.submit_feedback(record)
                except (KeyError, TypeError, ValueError) as e:
                    self._respond(400, {"error": str(e)})
                    return
                self._respond(200, {"success": True, "message": "Feedback recorded successfully"})

            elif url.path == "/api/patterns/test":
                text = body.get("text", "")
                pattern = PatternDefinition.from_dict(body.get("pattern") or {})
                matches = detect_for_pattern(text, pattern, _fuzzy)
                self._respond(200, {"matches": [m.to_dict() for m in matches]})

            else:
                self._respond(404, {"error": "not found"})

        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            self._respond(400, {"error": f"Invalid request: {e}"})
        except Exception as e:
            logger.exception("POST %s failed", self.path)
            self._respond(500, {"error": str(e)})


def serve(
    port: int = DEFAULT_PORT,
    db_path: str = DEFAULT_DB,
    auto_refine_threshold: int = 2,
) -> None:
    """Start the pattern store HTTP sidecar."""
    global _store
    _store = SqliteFeedbackStore(db_path=db_path, auto_refine_threshold=auto_refine_threshold)

    server = HTTPServer(("127.0.0.1", port), PatternStoreHandler)
    logger.info("pii-annotator store listening on http://127.0.0.1:%d", port)
    logger.info("  pattern db: %s", db_path)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        server.server_close()
        _store.close()


if __name__ == "__main__":
    import argparse
    parser = argparse.ArgumentParser(description="pii-annotator pattern store sidecar")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--db", default=DEFAULT_DB)
    parser.add_argument("--auto-refine-threshold", type=int, default=2)
    parser.add_argument("--log-level", default=os.environ.get("PII_ANNOTATOR_LOG_LEVEL", "INFO"))
    args = parser.parse_args()
    setup_logging(args.log_level)
    serve(port=args.port, db_path=args.db, auto_refine_threshold=args.auto_refine_threshold)
