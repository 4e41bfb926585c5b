"""Tests for the annotation session."""

import asyncio
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from pii_annotator import (
    AnnotationSession,
    Document,
    FeedbackNotAllowed,
    FeedbackStore,
    FeedbackType,
    LocalStoreClient,
    MLMatch,
    PatternDefinition,
    PatternStoreError,
    PatternType,
    RefinedPatternDefinition,
)
from pii_annotator.catalog import PREDEFINED_PATTERNS
from pii_annotator.renderer import ML_HIGHLIGHT_CLASS

PHONE_DOC = Document("doc-1", "calls.txt", "Call 555-1234 today. Otherwise 555-9999 works.")


def _texts(session):
    return sorted(m.text for m in session.current_matches())


def _session_with_saved_phone(store):
    """A session resumed from a store holding a 'Desk Phone' pattern."""
    first = AnnotationSession([PHONE_DOC])
    phone = first.add_custom_pattern("Desk Phone")
    first.add_example("555-1234", phone.id)
    saved = store.save_patterns(first.finalize())
    session = AnnotationSession([PHONE_DOC], store=LocalStoreClient(store), initial_patterns=saved)
    return session, saved[0].id


# ── Initial state ────────────────────────────────────────────────────

def test_starts_with_predefined_catalog():
    session = AnnotationSession([PHONE_DOC])
    assert len(session.patterns) == len(PREDEFINED_PATTERNS)
    assert session.patterns[0].id == "pattern-0"
    assert all(not p.examples for p in session.patterns)
    assert "<span" not in session.highlighted_html


def test_sessions_do_not_share_catalog_state():
    a = AnnotationSession([PHONE_DOC])
    a.add_example("555-1234", "pattern-2")
    b = AnnotationSession([PHONE_DOC])
    assert b.get_pattern("pattern-2").examples == []


def test_resume_merges_by_label_and_type():
    saved = PatternDefinition(
        id="3f2b8c1e-1111-4a4a-8b8b-123456789abc", label="Social Security Number",
        type=PatternType.PII, examples=["123-45-6789"], regex=r"\b\d{3}-\d{2}-\d{4}\b",
    )
    session = AnnotationSession([PHONE_DOC], initial_patterns=[saved])

    ssn = session.get_pattern(saved.id)
    assert ssn is not None and ssn.is_persisted
    assert ssn.color == "bg-red-100 text-red-800"
    assert ssn.existing_examples == ["123-45-6789"]
    assert session.get_pattern("pattern-0") is None
    assert len(session.patterns) == len(PREDEFINED_PATTERNS)


def test_resume_by_id_keeps_slot():
    saved = PatternDefinition(id="pattern-1", label="Renamed", type=PatternType.PII,
                              examples=["a@b.co"])
    session = AnnotationSession([PHONE_DOC], initial_patterns=[saved])
    slot = session.get_pattern("pattern-1")
    assert slot.label == "Email Address"
    assert slot.examples == ["a@b.co"]
    assert slot.regex is not None  # learned on resume


def test_resume_by_id_with_other_type_gets_own_entry():
    saved = PatternDefinition(id="pattern-1", label="IBAN", type=PatternType.FINANCIAL,
                              examples=["DE89370400440532013000"])
    session = AnnotationSession([PHONE_DOC], initial_patterns=[saved])

    iban = session.patterns[0]
    assert iban.id == "session-pattern-1"
    assert iban.label == "IBAN"
    assert iban.examples == ["DE89370400440532013000"]
    email = session.get_pattern("pattern-1")
    assert email.label == "Email Address"
    assert email.examples == []
    assert [p.label for p in session.patterns].count("IBAN") == 1


def test_resume_type_mismatch_gets_session_prefix():
    saved = PatternDefinition(id="abc", label="Secret", type=PatternType.CUSTOM, examples=["x"])
    session = AnnotationSession([PHONE_DOC], initial_patterns=[saved])
    assert session.patterns[0].id == "session-abc"
    assert [p.label for p in session.patterns].count("Secret") == 1


def test_resume_unmatched_is_prepended():
    saved = [
        PatternDefinition(id="u1", label="Project Name", examples=["Falcon"]),
        PatternDefinition(id="u2", label="Project Name", examples=["Osprey"]),
    ]
    session = AnnotationSession([PHONE_DOC], initial_patterns=saved)
    assert session.patterns[0].id == "u1"
    assert [p.label for p in session.patterns].count("Project Name") == 1


# ── Editing ──────────────────────────────────────────────────────────

def test_add_example_from_selection():
    session = AnnotationSession([PHONE_DOC])
    session.select_pattern("pattern-2")
    session.select_text("  555-1234 ")
    assert session.add_example()

    phone = session.get_pattern("pattern-2")
    assert phone.examples == ["555-1234"]
    assert phone.regex is not None
    assert session.selected_text == ""
    assert _texts(session) == ["555-1234", "555-9999"]
    assert session.highlighted_html.count("<span ") == 2


def test_add_example_requires_text_and_pattern():
    session = AnnotationSession([PHONE_DOC])
    session.select_text("555-1234")
    assert not session.add_example()
    session.select_pattern("pattern-2")
    session.select_text("   ")
    assert not session.add_example()


def test_removing_only_example_clears_rules():
    session = AnnotationSession([PHONE_DOC])
    session.add_example("555-1234", "pattern-2")
    assert session.remove_example("pattern-2", 0)

    phone = session.get_pattern("pattern-2")
    assert phone.regex is None
    assert phone.regex_patterns is None
    assert "<span" not in session.highlighted_html


def test_remove_example_relearns_from_remaining():
    session = AnnotationSession([Document("d", "d", "Falcon and 555-1234")])
    custom = session.add_custom_pattern("Mixed")
    session.add_example("555-1234", custom.id)
    session.add_example("Falcon", custom.id)
    session.remove_example(custom.id, 1)
    assert session.get_pattern(custom.id).examples == ["555-1234"]
    assert _texts(session) == ["555-1234"]


def test_remove_then_add_leaves_no_residue():
    doc = Document("d", "d", "ABC-123 XYZ-987 mail john@example.com")
    session = AnnotationSession([doc])
    custom = session.add_custom_pattern("Thing")

    session.add_example("ABC-123", custom.id)
    assert _texts(session) == ["ABC-123", "XYZ-987"]

    session.remove_example(custom.id, 0)
    session.add_example("john@example.com", custom.id)
    assert _texts(session) == ["john@example.com"]
    assert all("ABC" not in rx for rx in session.get_pattern(custom.id).regex_patterns)


def test_add_custom_pattern():
    session = AnnotationSession([PHONE_DOC])
    a = session.add_custom_pattern("Project")
    b = session.add_custom_pattern("Project 2")
    assert session.patterns[0] is b
    assert a.id.startswith("custom-") and b.id.startswith("custom-")
    assert a.id != b.id
    assert a.type is PatternType.CUSTOM
    assert session.add_custom_pattern("   ") is None


def test_remove_pattern():
    session = AnnotationSession([PHONE_DOC])
    session.add_example("555-1234", "pattern-2")
    session.select_pattern("pattern-2")
    assert session.remove_pattern("pattern-2")
    assert session.get_pattern("pattern-2") is None
    assert session.selected_pattern_id is None
    assert "<span" not in session.highlighted_html
    assert not session.remove_pattern("pattern-2")


def test_finalize_drops_empty_patterns():
    session = AnnotationSession([PHONE_DOC])
    session.add_example("555-1234", "pattern-2")
    final = session.finalize()
    assert [p.id for p in final] == ["pattern-2"]


# ── Navigation ───────────────────────────────────────────────────────

def test_arrow_navigation():
    docs = [PHONE_DOC, Document("doc-2", "b.txt", "nothing here")]
    session = AnnotationSession(docs)
    session.add_example("555-1234", "pattern-2")

    assert not session.navigate("ArrowLeft")
    assert not session.navigate("ArrowRight", input_focused=True)
    assert session.current_index == 0

    session.show_ml = True
    assert session.navigate("ArrowRight")
    assert session.current_index == 1
    assert session.show_ml is False
    assert "<span" not in session.highlighted_html
    assert not session.navigate("ArrowRight")

    assert session.navigate("ArrowLeft")
    assert session.highlighted_html.count("<span ") == 2


# ── Feedback ─────────────────────────────────────────────────────────

def test_click_on_unsaved_pattern_gives_no_prompt():
    session = AnnotationSession([PHONE_DOC])
    session.add_example("555-1234", "pattern-2")
    assert session.click_highlight("pattern-2", "555-1234", 0.95) is None
    assert session.notifications[-1].message == "Save pattern to enable feedback"


def test_click_on_context_clue_gives_no_prompt():
    saved = PatternDefinition(id="3f2b8c1e-1111-4a4a-8b8b-123456789abc", label="Clue",
                              examples=["SSN"], is_context_clue=True)
    session = AnnotationSession([PHONE_DOC], initial_patterns=[saved])
    assert session.click_highlight(saved.id, "SSN", 1.0) is None


@pytest.mark.asyncio
async def test_submit_without_prompt_not_allowed():
    session = AnnotationSession([PHONE_DOC], store=LocalStoreClient(FeedbackStore()))
    with pytest.raises(FeedbackNotAllowed):
        await session.submit_feedback(FeedbackType.NEGATIVE)


@pytest.mark.asyncio
async def test_negative_feedback_twice_hides_span():
    store = FeedbackStore()
    session, pid = _session_with_saved_phone(store)
    assert _texts(session) == ["555-1234", "555-9999"]

    for _ in range(2):
        prompt = session.click_highlight(pid, "555-1234", 0.95)
        assert prompt is not None
        assert await session.submit_feedback("negative")

    assert _texts(session) == ["555-9999"]
    assert ">555-1234</span>" not in session.highlighted_html
    assert ">555-9999</span>" in session.highlighted_html
    assert session.notifications[-1].level == "success"
    assert store.feedback_for(pid)[0].data_source_id == "doc-1"


class _FailingStore:
    async def submit_feedback(self, record):
        raise PatternStoreError("POST /api/patterns/feedback timed out")

    async def fetch_refined(self):
        raise PatternStoreError("GET /api/patterns/refined timed out")

    async def save_patterns(self, patterns):
        raise PatternStoreError("POST /api/patterns timed out")


@pytest.mark.asyncio
async def test_network_failure_keeps_state():
    store = FeedbackStore()
    session, pid = _session_with_saved_phone(store)
    session.refined = {pid: RefinedPatternDefinition(pid, frozenset(), 0.7)}
    session.recompute_highlights()
    before = session.highlighted_html
    session.store = _FailingStore()

    session.click_highlight(pid, "555-1234", 0.95)
    assert not await session.submit_feedback(FeedbackType.NEGATIVE)
    assert session.notifications[-1].level == "error"
    assert session.pending_feedback is not None  # retry possible
    assert session.highlighted_html == before

    assert not await session.refresh_refinements()
    assert pid in session.refined
    assert session.highlighted_html == before


@pytest.mark.asyncio
async def test_resumed_session_loads_refinements():
    store = FeedbackStore()
    session, pid = _session_with_saved_phone(store)
    for _ in range(2):
        session.click_highlight(pid, "555-1234", 0.95)
        assert await session.submit_feedback("negative")

    resumed = AnnotationSession([PHONE_DOC], store=LocalStoreClient(store),
                                initial_patterns=store.list_patterns())
    assert _texts(resumed) == ["555-1234", "555-9999"]
    assert await resumed.load()
    assert "555-1234" in resumed.refined[pid].excluded_examples
    assert _texts(resumed) == ["555-9999"]
    assert ">555-1234</span>" not in resumed.highlighted_html


@pytest.mark.asyncio
async def test_load_skips_store_without_stored_patterns():
    session = AnnotationSession([PHONE_DOC], store=_FailingStore())
    assert await session.load()
    assert session.notifications == []


# ── Saving ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_save_adopts_store_ids_and_enables_feedback():
    store = FeedbackStore()
    session = AnnotationSession([PHONE_DOC], store=LocalStoreClient(store))
    phone = session.add_custom_pattern("Desk Phone")
    session.add_example("555-1234", phone.id)
    session.select_pattern(phone.id)
    assert session.click_highlight(phone.id, "555-1234", 0.95) is None

    assert await session.save()
    saved = session.get_pattern(session.selected_pattern_id)
    assert saved.is_persisted
    assert saved.label == "Desk Phone"
    assert saved.existing_examples == ["555-1234"]
    assert session.get_pattern(phone.id) is None
    assert store.get_pattern(saved.id) is not None

    assert session.click_highlight(saved.id, "555-1234", 0.95) is not None
    assert await session.submit_feedback(FeedbackType.NEGATIVE)
    assert store.feedback_for(saved.id)[0].matched_text == "555-1234"


@pytest.mark.asyncio
async def test_save_failure_keeps_patterns():
    session = AnnotationSession([PHONE_DOC], store=_FailingStore())
    session.add_example("555-1234", "pattern-2")
    assert not await session.save()
    assert session.notifications[-1].level == "error"
    assert session.get_pattern("pattern-2").examples == ["555-1234"]


@pytest.mark.asyncio
async def test_save_without_examples_or_store():
    assert not await AnnotationSession([PHONE_DOC]).save()
    session = AnnotationSession([PHONE_DOC], store=LocalStoreClient(FeedbackStore()))
    assert not await session.save()


class _SlowThenFastStore:
    def __init__(self):
        self.release = asyncio.Event()
        self.calls = 0

    async def submit_feedback(self, record):
        pass

    async def fetch_refined(self):
        self.calls += 1
        if self.calls == 1:
            await self.release.wait()
            return {"old": RefinedPatternDefinition("old")}
        return {"new": RefinedPatternDefinition("new")}


@pytest.mark.asyncio
async def test_stale_refinement_response_ignored():
    store = _SlowThenFastStore()
    session = AnnotationSession([PHONE_DOC], store=store)

    slow = asyncio.create_task(session.refresh_refinements())
    await asyncio.sleep(0)
    assert await session.refresh_refinements()
    store.release.set()
    assert not await slow
    assert set(session.refined) == {"new"}


# ── ML detection ─────────────────────────────────────────────────────

class _GatedDetector:
    def __init__(self):
        self.gate = asyncio.Event()
        self.calls = 0

    async def __call__(self, text, pattern):
        self.calls += 1
        await self.gate.wait()
        start = text.index("555-9999")
        return [
            MLMatch(start, start + 8, "555-9999", 0.61),
            MLMatch(start + 2, start + 8, "5-9999"),  # overlaps, dropped
        ]


@pytest.mark.asyncio
async def test_ml_detection_single_flight():
    detector = _GatedDetector()
    session = AnnotationSession([PHONE_DOC], detector=detector)
    session.add_example("555-1234", "pattern-2")

    running = asyncio.create_task(session.run_ml_detection())
    await asyncio.sleep(0)
    assert session.is_running
    assert not await session.run_ml_detection()

    detector.gate.set()
    assert await running
    assert not session.is_running
    assert detector.calls == 1  # only the pattern with examples
    assert session.show_ml

    html = session.ml_highlighted_html
    assert html.count(f'class="{ML_HIGHLIGHT_CLASS} ') == 1
    assert 'data-confidence="0.61"' in html
    # regex view untouched
    assert session.highlighted_html.count("highlight-annotation") == 2


@pytest.mark.asyncio
async def test_ml_detection_failure_is_reported():
    async def broken(text, pattern):
        raise RuntimeError("model not available")

    session = AnnotationSession([PHONE_DOC], detector=broken)
    session.add_example("555-1234", "pattern-2")
    assert not await session.run_ml_detection()
    assert not session.is_running
    assert session.notifications[-1].level == "error"
    assert session.ml_highlighted_html is None


@pytest.mark.asyncio
async def test_ml_detection_failure_stays_with_its_pattern():
    async def flaky(text, pattern):
        if pattern.id == "pattern-0":
            raise RuntimeError("model not available")
        start = text.index("555-9999")
        return [MLMatch(start, start + 8, "555-9999", 0.7)]

    session = AnnotationSession([PHONE_DOC], detector=flaky)
    session.add_example("123-45-6789", "pattern-0")
    session.add_example("555-1234", "pattern-2")
    assert await session.run_ml_detection()
    assert [n.level for n in session.notifications] == ["error", "success"]
    assert ">555-9999</span>" in session.ml_highlighted_html
    assert session.show_ml


@pytest.mark.asyncio
async def test_ml_detection_without_detector():
    session = AnnotationSession([PHONE_DOC])
    assert not await session.run_ml_detection()
    assert session.notifications[-1].message == "No ML detector configured"
