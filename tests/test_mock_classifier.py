"""Tests for the deterministic offline classifier."""

import asyncio

import pytest

from conftest import make_document
from docfiling.models.documents import DocumentHints
from docfiling.models.pipeline import ChecklistItem, ClassificationRequest
from docfiling.services.mock_classifier import (
    MockClassifier,
    generate_alternatives,
    generate_intelligence_fields,
    match_checklist,
    resolve_file_type,
)
from docfiling.services.preprocessor import analyze_characteristics
from docfiling.services.reference_library import load_system_references


def hinted_document(index, file_name, text=None):
    return make_document(index, file_name, text=text or "", hints=analyze_characteristics(file_name, text))


class TestResolveFileType:
    """Cascade: hint, tag overlap, characteristics, fallback."""

    def test_hint_matching_reference(self):
        decision = resolve_file_type(hinted_document(0, "RedBook_Valuation_123.pdf"), load_system_references())

        assert decision == ("RedBook Valuation", "Appraisals", 0.92)

    def test_hint_without_reference(self):
        decision = resolve_file_type(hinted_document(0, "RedBook_Valuation_123.pdf"), [])

        assert decision == ("RedBook Valuation", "Appraisals", 0.78)

    def test_tag_overlap(self):
        hints = DocumentHints(matched_tags=["kyc", "identity", "images"])
        doc = make_document(0, "IMG_0001.jpg", hints=hints)

        decision = resolve_file_type(doc, load_system_references())

        # Passport carries all three tags: 0.60 + 3 * 0.08
        assert decision == ("Passport", "KYC", 0.84)

    def test_single_tag_overlap_is_not_enough(self):
        hints = DocumentHints(matched_tags=["images"], is_image=True)
        doc = make_document(0, "IMG_0001.jpg", hints=hints)

        assert resolve_file_type(doc, [])[0] == "Site Photographs"

    @pytest.mark.parametrize("hints,expected", [
        (DocumentHints(is_identity=True), ("KYC Document", "KYC", 0.65)),
        (DocumentHints(is_financial=True, is_spreadsheet=True), ("Cashflow", "Appraisals", 0.60)),
        (DocumentHints(is_legal=True), ("Legal Document", "Legal Documents", 0.55)),
        (DocumentHints(is_financial=True), ("Financial Document", "Financial Documents", 0.55)),
        (DocumentHints(is_image=True), ("Site Photographs", "Photographs", 0.60)),
        (DocumentHints(), ("Other", "Other", 0.40)),
    ])
    def test_characteristic_fallbacks(self, hints, expected):
        assert resolve_file_type(make_document(0, "scan.bin", hints=hints), []) == expected


class TestSyntheticPayloads:
    def test_checklist_matching(self):
        items = [
            ChecklistItem(id="a", name="Valuation", category="Appraisals",
                          matching_document_types=["RedBook Valuation"]),
            ChecklistItem(id="b", name="Appraisal pack", category="Appraisals"),
            ChecklistItem(id="c", name="Passport", category="KYC"),
            ChecklistItem(id="d", name="Valuation", category="Appraisals", status="fulfilled"),
        ]

        matches = match_checklist("RedBook Valuation", "Appraisals", items)

        assert [(m.item_id, m.confidence) for m in matches] == [("a", 0.92), ("b", 0.75)]

    def test_checklist_name_match(self):
        items = [ChecklistItem(id="x", name="Passport", category="Identity")]

        matches = match_checklist("Passport", "KYC", items)

        assert matches[0].confidence == 0.70

    def test_intelligence_fields_by_category(self):
        assert [f.field_path for f in generate_intelligence_fields("Cashflow", "Appraisals")] == ["document.type"]
        assert [f.field_path for f in generate_intelligence_fields("Indicative Terms", "Loan Terms")] == [
            "loan.facilityType"
        ]
        assert generate_intelligence_fields("Floor Plans", "Plans") == []

    def test_alternatives_from_same_category(self):
        alternatives = generate_alternatives("RedBook Valuation", "Appraisals", load_system_references())

        assert [a.file_type for a in alternatives] == ["Appraisal", "Cashflow"]
        assert [a.confidence for a in alternatives] == [0.45, 0.35]


class TestMockClassifier:
    @pytest.mark.asyncio
    async def test_classify_batch(self):
        classifier = MockClassifier(simulate_latency=False)
        chunk = [
            hinted_document(0, "RedBook_Valuation_123.pdf"),
            hinted_document(1, "passport_scan.jpg"),
        ]
        request = ClassificationRequest(references=list(load_system_references()))

        result = await classifier.classify_batch(chunk, request)

        assert [c.document_index for c in result.classifications] == [0, 1]
        valuation, passport = result.classifications
        assert valuation.classification.file_type == "RedBook Valuation"
        assert valuation.classification.suggested_folder == "appraisals"
        assert valuation.classification.target_level == "project"
        assert valuation.summary.executive_summary.startswith("[MOCK] RedBook Valuation")
        assert passport.classification.category == "KYC"
        assert passport.classification.target_level == "client"
        assert result.usage.input_tokens == 2 * 1200 + 3000
        assert result.usage.output_tokens == 2 * 800

    @pytest.mark.asyncio
    async def test_is_deterministic(self):
        classifier = MockClassifier(simulate_latency=False)
        chunk = [hinted_document(0, "Facility Agreement.pdf", "The Lender and the Borrower agree")]
        request = ClassificationRequest(references=list(load_system_references()))

        first = await classifier.classify_batch(chunk, request)
        second = await classifier.classify_batch(chunk, request)

        assert first.classifications == second.classifications

    @pytest.mark.asyncio
    async def test_simulated_latency_respects_timeout(self):
        classifier = MockClassifier(simulate_latency=True)
        chunk = [make_document(i, f"d{i}.txt") for i in range(4)]

        with pytest.raises(asyncio.TimeoutError):
            await classifier.classify_batch(chunk, ClassificationRequest(), timeout=0.001)
