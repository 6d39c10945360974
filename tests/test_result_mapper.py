"""Tests for mapping pipeline results onto the store write contract."""

from datetime import date

from conftest import make_classification
from docfiling.models.classification import (
    AlternativeType,
    DocumentSummary,
    IntelligenceField,
    KeyEntities,
)
from docfiling.models.pipeline import (
    ClientContext,
    DocumentError,
    PipelineMetadata,
    PipelineResult,
)
from docfiling.services.placement import resolve_placement
from docfiling.services.result_mapper import (
    build_extracted_data,
    build_knowledge_entry,
    derive_shortcode,
    generate_document_code,
    map_batch,
    map_classification,
)

ON_DATE = date(2024, 3, 1)


def field(path, value, confidence=0.9, value_type="text", label=""):
    return IntelligenceField(field_path=path, value=value, confidence=confidence, value_type=value_type, label=label)


def valuation_document(index=0, confidence=0.92):
    doc = make_classification(
        index, "RedBook Valuation", "Appraisals", confidence=confidence,
        file_name="RedBook_Valuation_123.pdf", suggested_folder="appraisals",
    )
    doc.summary = DocumentSummary(
        executive_summary="RICS valuation of the Wimbledon Park site.",
        document_purpose="Valuation for lending",
        key_entities=KeyEntities(people=["J. Smith"], companies=["Knight Frank"]),
        key_terms=["GDV", "Market Value"],
        key_dates=["2024-01-15"],
        key_amounts=["£2,500,000", "£4,100,000", "£900,000", "£1"],
    )
    return doc


class TestDocumentCode:
    def test_derive_shortcode(self):
        assert derive_shortcode("Acme Holdings Ltd") == "ACMEHOLDIN"
        assert derive_shortcode("Café & Co") == "CAFCO"
        assert derive_shortcode("") == "DOC"
        assert derive_shortcode(None) == "DOC"

    def test_project_shortcode_preferred(self):
        context = ClientContext(client_name="Acme Homes", project_shortcode="WIMBPARK")

        code = generate_document_code("RedBook Valuation", context, on_date=ON_DATE)

        assert code == "WIMBPARK-VAL-EXT-SYS-V1.0-2024-03-01"

    def test_client_name_internal_with_initials(self):
        context = ClientContext(client_name="Acme Homes", uploader_initials="jd")

        code = generate_document_code("Board Pack", context, is_internal=True, on_date=ON_DATE)

        assert code == "ACMEHOMES-BOARDPACK-INT-JD-V1.0-2024-03-01"


class TestExtractedData:
    def test_paths_are_nested(self):
        data = build_extracted_data([
            field("financials.gdv", 4100000, value_type="currency", label="GDV"),
            field("financials.costs.build", 2000000, value_type="currency"),
            field("title", "Site A"),
        ])

        assert data["financials"]["gdv"] == {"value": 4100000, "type": "currency", "confidence": 0.9, "label": "GDV"}
        assert data["financials"]["costs"]["build"]["value"] == 2000000
        assert data["title"]["value"] == "Site A"

    def test_intelligence_fields_override_classification_fields(self):
        data = build_extracted_data(
            [field("loan.amount", "1.5m", confidence=0.5)],
            [field("loan.amount", 1500000, confidence=0.95)],
        )

        assert data["loan"]["amount"]["value"] == 1500000
        assert data["loan"]["amount"]["confidence"] == 0.95

    def test_deeper_path_replaces_leaf(self):
        data = build_extracted_data([field("loan", "yes"), field("loan.amount", 10)])

        assert data == {"loan": {"amount": {"value": 10, "type": "text", "confidence": 0.9, "label": ""}}}

    def test_parent_leaf_dropped_in_either_order(self):
        expected = {"loan": {"amount": {"value": 10, "type": "text", "confidence": 0.9, "label": ""}}}

        assert build_extracted_data([field("loan.amount", 10), field("loan", "yes")]) == expected
        assert build_extracted_data([field("loan", "yes")], [field("loan.amount", 10)]) == expected

    def test_subtree_with_leaf_shaped_keys_is_kept(self):
        data = build_extracted_data([
            field("m.value", 1), field("m.type", 2), field("m.confidence", 3), field("m.label", 4),
            field("m.extra", 5),
        ])

        assert set(data["m"]) == {"value", "type", "confidence", "label", "extra"}
        assert data["m"]["extra"]["value"] == 5

    def test_node_with_value_key_is_not_mistaken_for_leaf(self):
        data = build_extracted_data([field("a.value.x", 1), field("a.value.y", 2)])

        assert set(data["a"]["value"]) == {"x", "y"}


class TestKnowledgeEntry:
    def test_entry_contents(self):
        doc = valuation_document()
        placement = resolve_placement("RedBook Valuation", "Appraisals", "appraisals")

        entry = build_knowledge_entry(doc, placement)

        assert entry.title == "RedBook Valuation: RedBook_Valuation_123.pdf"
        assert entry.content == "RICS valuation of the Wimbledon Park site."
        assert entry.key_points == [
            "Valuation for lending",
            "Key amounts: £2,500,000, £4,100,000, £900,000",
            "Key dates: 2024-01-15",
            "Key parties: J. Smith, Knight Frank",
        ]
        assert entry.tags == ["appraisals", "redbook_valuation", "GDV", "Market Value"]

    def test_empty_summary_gets_default_content(self):
        doc = make_classification(0, "Floor Plans", "Plans", file_name="plan.pdf")
        placement = resolve_placement("Floor Plans", "Plans", None)

        entry = build_knowledge_entry(doc, placement)

        assert entry.content == "Floor Plans document filed to Appraisals."
        assert entry.key_points == []


class TestMapClassification:
    def test_item_analysis(self):
        doc = valuation_document()
        doc.intelligence_fields = [field("valuation.marketValue", 2500000)]
        placement = resolve_placement("RedBook Valuation", "Appraisals", "appraisals")

        mapped = map_classification(
            doc, placement, [field("valuation.gdv", 4100000)],
            ClientContext(project_shortcode="WIMBPARK"), on_date=ON_DATE,
        )

        analysis = mapped.item_analysis
        assert analysis.file_type_detected == "RedBook Valuation"
        assert analysis.target_folder == "appraisals"
        assert analysis.generated_document_code == "WIMBPARK-VAL-EXT-SYS-V1.0-2024-03-01"
        assert analysis.version == "V1.0"
        assert set(analysis.extracted_data["valuation"]) == {"marketValue", "gdv"}
        assert mapped.is_low_confidence is False

    def test_low_confidence_flag_and_alternatives(self):
        doc = valuation_document(confidence=0.55)
        doc.classification.alternative_types = [AlternativeType(file_type="Appraisal", confidence=0.45)]
        placement = resolve_placement("RedBook Valuation", "Appraisals", "appraisals")

        mapped = map_classification(doc, placement, on_date=ON_DATE)

        assert mapped.is_low_confidence is True
        assert [a.file_type for a in mapped.alternative_types] == ["Appraisal"]


class TestMapBatch:
    def test_stats(self):
        docs = [
            valuation_document(0),
            make_classification(1, "Cashflow", "Appraisals", confidence=0.4, suggested_folder="appraisals"),
        ]
        placements = {
            0: resolve_placement("RedBook Valuation", "Appraisals", "appraisals"),
            1: resolve_placement("Cashflow", "Appraisals", "appraisals"),
        }
        result = PipelineResult(
            success=False,
            documents=docs,
            placements=placements,
            intelligence={0: [field("valuation.gdv", 1)]},
            metadata=PipelineMetadata(model="mock", batch_size=3),
            errors=[DocumentError(document_index=2, file_name="c.pdf", error="boom")],
        )

        mapped, stats = map_batch(result, ClientContext(client_name="Acme"), on_date=ON_DATE)

        assert [m.document_index for m in mapped] == [0, 1]
        assert mapped[0].intelligence_fields[0].field_path == "valuation.gdv"
        assert stats.total_documents == 3
        assert stats.classified == 2
        assert stats.errors == 1
        assert stats.low_confidence_count == 1
        assert stats.placement_overrides == 1
        assert stats.category_counts == {"Appraisals": 2}
        assert stats.folder_counts == {"appraisals": 1, "operational_model": 1}
