"""Tests for classification prompt construction and response parsing."""

import pytest

from conftest import make_document
from docfiling.exceptions import ClassificationParseError
from docfiling.models.documents import (
    BatchDocument,
    DocumentHints,
    ImageContent,
    PdfPage,
    PdfPagesContent,
    SheetPreview,
    SpreadsheetContent,
    SpreadsheetSummary,
)
from docfiling.models.oracle import DocumentBlock, ImageBlock, TextBlock
from docfiling.models.pipeline import (
    ChecklistItem,
    ClassificationRequest,
    ClientContext,
    CorrectionContext,
    FolderInfo,
    PipelineConfig,
    TypeAndCategory,
)
from docfiling.services.prompts import (
    NO_REFERENCES_NOTICE,
    build_batch_user_blocks,
    build_context_header,
    build_document_content_blocks,
    build_document_header,
    build_system_blocks,
    parse_classification_response,
)


class TestSystemBlocks:
    def test_stable_and_dynamic_blocks(self):
        folders = [FolderInfo(folder_key="kyc", name="KYC", level="client")]

        blocks = build_system_blocks("INSTRUCTIONS", folders, "## Reference Library\n...")

        assert len(blocks) == 2
        assert blocks[0].text == "INSTRUCTIONS"
        assert blocks[0].cacheable is True
        assert blocks[1].cacheable is False
        assert "- kyc (KYC, client-level)" in blocks[1].text
        assert "## Reference Library" in blocks[1].text

    def test_no_references_notice(self):
        blocks = build_system_blocks("INSTRUCTIONS", [], "")

        assert blocks[1].text == NO_REFERENCES_NOTICE


class TestContextHeader:
    def test_includes_client_checklist_corrections_and_instructions(self):
        request = ClassificationRequest(
            client_context=ClientContext(client_name="Acme Homes", client_type="borrower"),
            checklist_items=[
                ChecklistItem(id="c1", name="Valuation Report", category="Appraisals",
                              matching_document_types=["RedBook Valuation"]),
                ChecklistItem(id="c2", name="Passport", category="KYC", status="fulfilled"),
            ],
            corrections=[
                CorrectionContext(
                    ai_predicted=TypeAndCategory(file_type="Appraisal", category="Appraisals"),
                    user_corrected=TypeAndCategory(file_type="Cashflow", category="Appraisals"),
                    file_name="model.xlsx",
                    correction_count=3,
                ),
            ],
            instructions="Treat scans as KYC.",
        )

        text = build_context_header(2, request)

        assert "Classify the following 2 document(s)." in text
        assert "**Client:** Acme Homes (borrower)" in text
        assert '- [c1] "Valuation Report" (Appraisals) - matches: RedBook Valuation' in text
        assert "c2" not in text
        assert '"model.xlsx": AI said "Appraisal" -> User corrected to "Cashflow" (3x)' in text
        assert "## Additional Instructions\nTreat scans as KYC." in text

    def test_corrections_are_capped(self):
        correction = CorrectionContext(
            ai_predicted=TypeAndCategory(file_type="A", category="X"),
            user_corrected=TypeAndCategory(file_type="B", category="X"),
            file_name="f.pdf",
        )
        request = ClassificationRequest(corrections=[correction] * 8)

        text = build_context_header(1, request)

        assert text.count('"f.pdf": AI said') == 5


class TestDocumentBlocks:
    def test_header_carries_index_and_hints(self):
        hints = DocumentHints(filename_type_hint="Passport", matched_tags=["kyc", "identity"])
        doc = make_document(3, "passport.pdf", hints=hints)

        header = build_document_header(doc)

        assert '## Document 3 (documentIndex: 3): "passport.pdf"' in header
        assert 'Filename hint: possibly "Passport"' in header
        assert "Matched tags: kyc, identity" in header

    def test_text_content(self):
        blocks = build_document_content_blocks(make_document(0, "a.txt", text="hello"))

        assert blocks == [TextBlock(text="Content:\n```\nhello\n```")]

    def test_pdf_and_image_are_multimodal(self):
        pdf = BatchDocument(index=0, file_name="a.pdf", media_type="application/pdf",
                            processed_content=PdfPagesContent(pages=[PdfPage(data="QUJD")]))
        image = BatchDocument(index=1, file_name="b.png", media_type="image/png",
                              processed_content=ImageContent(data="QUJD", media_type="image/png"))

        assert build_document_content_blocks(pdf) == [DocumentBlock(data="QUJD")]
        assert build_document_content_blocks(image) == [ImageBlock(data="QUJD", media_type="image/png")]

    def test_multimodal_disabled_sends_text_notice(self):
        pdf = BatchDocument(index=0, file_name="a.pdf", media_type="application/pdf",
                            processed_content=PdfPagesContent(pages=[PdfPage(data="QUJD")]))

        blocks = build_document_content_blocks(pdf, use_multimodal=False)

        assert len(blocks) == 1
        assert isinstance(blocks[0], TextBlock)
        assert "classify from filename" in blocks[0].text

    def test_spreadsheet_rows_are_capped(self):
        summary = SpreadsheetSummary(
            sheet_names=["S"],
            sheet_previews=[SheetPreview(
                sheet_name="S", headers=["h"], sample_rows=[[f"row{i}"] for i in range(10)], total_rows=10,
            )],
        )
        doc = BatchDocument(index=0, file_name="s.xlsx", media_type="text/csv",
                            processed_content=SpreadsheetContent(text="", summary=summary))

        text = build_document_content_blocks(doc)[0].text

        assert "row4" in text
        assert "row5" not in text

    def test_batch_user_blocks_layout(self):
        documents = [make_document(0, "a.txt"), make_document(1, "b.txt")]
        request = ClassificationRequest(config=PipelineConfig())

        blocks = build_batch_user_blocks(documents, request)

        # context + (header + content) per document + output format
        assert len(blocks) == 1 + 2 * 2 + 1
        assert "Batch Classification Request" in blocks[0].text
        assert "Required Output Format" in blocks[-1].text


class TestParseClassificationResponse:
    def test_plain_array(self):
        assert parse_classification_response('[{"documentIndex": 0}]') == [{"documentIndex": 0}]

    def test_fenced_json(self):
        text = '```json\n[{"documentIndex": 1}]\n```'

        assert parse_classification_response(text) == [{"documentIndex": 1}]

    def test_single_object_is_wrapped(self):
        assert parse_classification_response('{"documentIndex": 0}') == [{"documentIndex": 0}]

    def test_array_recovered_from_prose(self):
        text = 'Here are the results: [{"documentIndex": 0}] Hope this helps.'

        assert parse_classification_response(text) == [{"documentIndex": 0}]

    def test_unparsable_raises(self):
        with pytest.raises(ClassificationParseError) as exc_info:
            parse_classification_response("I could not classify these documents.")

        assert "I could not classify" in exc_info.value.raw_response
