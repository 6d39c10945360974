"""Document preprocessing: raw uploads to normalized batch documents.

Each upload goes through two independent passes:

1. Heuristics: an ordered filename pattern table (first match wins) and
   keyword scans over the filename plus leading text, producing hints.
2. Content: a branch on file kind that yields truncated text, a base64
   PDF or image payload, or a spreadsheet preview.

Preprocessing never raises. A file that cannot be read gets a
placeholder content string and keeps its filename hints.
"""

import asyncio
import base64
import logging
import mimetypes
import re
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

from docfiling.models.documents import (
    BatchDocument,
    DocumentContent,
    DocumentHints,
    ImageContent,
    PdfPage,
    PdfPagesContent,
    SpreadsheetContent,
    SpreadsheetSummary,
    TextContent,
    UploadedFile,
)
from docfiling.utils.text import truncate_head_tail

logger = logging.getLogger(__name__)

MAX_TEXT_CHARS = 4000
HEAD_RATIO = 0.75
HINT_SCAN_CHARS = 2000

PDF_PLACEHOLDER = "[PDF content could not be extracted]"
IMAGE_PLACEHOLDER = "[Image content could not be processed]"
SPREADSHEET_PLACEHOLDER = "[Spreadsheet content requires server-side extraction]"
UNREADABLE_PLACEHOLDER = "[Content could not be read]"


# ---------------------------------------------------------------------------
# Filename patterns
# ---------------------------------------------------------------------------

class FilenamePattern(NamedTuple):
    pattern: re.Pattern
    file_type: str
    category: str
    tags: Tuple[str, ...]


def _p(regex: str, file_type: str, category: str, *tags: str) -> FilenamePattern:
    return FilenamePattern(re.compile(regex, re.IGNORECASE), file_type, category, tags)


FILENAME_PATTERNS: List[FilenamePattern] = [
    # KYC / identity
    _p(r"passport|biodata|bio.?data", "Passport", "KYC", "kyc", "identity"),
    _p(r"driv(?:ing|er).?lic", "Driving License", "KYC", "kyc", "identity"),
    _p(r"bank.?statement", "Bank Statement", "KYC", "kyc", "financial"),
    _p(r"utility.?bill", "Utility Bill", "KYC", "kyc", "proof-of-address"),
    _p(r"cert(?:ificate)?.?of.?inc", "Certificate of Incorporation", "KYC", "kyc", "corporate"),
    _p(r"tax.?return", "Tax Return", "KYC", "kyc", "financial"),
    _p(r"company.?search", "Company Search", "KYC", "kyc", "corporate"),
    _p(r"application.?form", "Application Form", "KYC", "kyc"),
    # Appraisals
    _p(r"red.?book|rics.?val", "RedBook Valuation", "Appraisals", "appraisals", "valuation"),
    _p(r"valuation", "RedBook Valuation", "Appraisals", "appraisals", "valuation"),
    _p(r"appraisal|development.?appraisal", "Appraisal", "Appraisals", "appraisals", "financial"),
    _p(r"cashflow|cash.?flow", "Cashflow", "Appraisals", "appraisals", "financial"),
    # Legal
    _p(r"facility.?(?:letter|agreement)", "Facility Letter", "Legal Documents", "legal", "loan"),
    _p(r"personal.?guarantee", "Personal Guarantee", "Legal Documents", "legal", "guarantee"),
    _p(r"title.?deed", "Title Deed", "Legal Documents", "legal", "property"),
    _p(r"lease", "Lease", "Legal Documents", "legal", "property"),
    _p(r"debenture", "Debenture", "Legal Documents", "legal", "security"),
    # Loan terms
    _p(r"indicative.?terms|term.?sheet|heads.?of.?terms", "Indicative Terms", "Loan Terms", "loan", "terms"),
    _p(r"credit.?(?:backed|approved)", "Credit Backed Terms", "Loan Terms", "loan", "terms", "credit"),
    # Inspections
    _p(r"monitor(?:ing)?.?report", "Initial Monitoring Report", "Inspections", "inspections", "monitoring"),
    _p(r"inspection", "Initial Monitoring Report", "Inspections", "inspections"),
    # Plans
    _p(r"floor.?plan", "Floor Plans", "Plans", "plans", "design"),
    _p(r"site.?plan", "Site Plans", "Plans", "plans", "design"),
    _p(r"elevation", "Elevations", "Plans", "plans", "design"),
    _p(r"section.?drawing", "Sections", "Plans", "plans", "design"),
    # Insurance
    _p(r"insurance.?polic", "Insurance Policy", "Insurance", "insurance"),
    _p(r"insurance.?cert", "Insurance Certificate", "Insurance", "insurance"),
    # Professional reports
    _p(r"building.?survey", "Building Survey", "Professional Reports", "reports", "survey"),
    _p(r"report.?on.?title", "Report on Title", "Professional Reports", "reports", "legal"),
    _p(r"environmental", "Environmental Report", "Professional Reports", "reports", "environment"),
    # Financial
    _p(r"invoice", "Invoice", "Financial Documents", "financial"),
    _p(r"receipt", "Receipt", "Financial Documents", "financial"),
    # Communications
    _p(r"email|correspondence|letter", "Email/Correspondence", "Communications", "communications"),
    _p(r"meeting.?minutes", "Meeting Minutes", "Communications", "communications"),
]


def analyze_filename(file_name: str) -> Optional[FilenamePattern]:
    """Return the first filename pattern matching ``file_name``, if any."""
    for entry in FILENAME_PATTERNS:
        if entry.pattern.search(file_name):
            return entry
    return None


# ---------------------------------------------------------------------------
# Characteristic keywords
# ---------------------------------------------------------------------------

FINANCIAL_PATTERN = re.compile(
    r"(?:£|GBP|amount|total|balance|payment|invoice|statement|fee|interest|loan|mortgage|"
    r"valuation|appraisal|GDV|cost)",
    re.IGNORECASE,
)
LEGAL_PATTERN = re.compile(
    r"(?:agreement|contract|deed|guarantee|clause|party|parties|hereby|covenant|obligation|"
    r"lender|borrower)",
    re.IGNORECASE,
)
# "ID" only counts as an uppercase whole word; lowercase "id" occurs inside ordinary words.
IDENTITY_PATTERN = re.compile(
    r"(?i:passport|licence|license|date of birth|nationality|identification)|\bID\b"
)
SPREADSHEET_EXTENSION = re.compile(r"\.(xlsx?|csv|ods)$", re.IGNORECASE)
IMAGE_EXTENSION = re.compile(r"\.(jpe?g|png|gif|webp|tiff?|bmp)$", re.IGNORECASE)


def analyze_characteristics(file_name: str, text: Optional[str] = None) -> DocumentHints:
    """Derive boolean flags and tags from the filename and leading text.

    Args:
        file_name: Original filename
        text: Extracted text, of which only the first 2000 characters are scanned

    Returns:
        DocumentHints with flags, filename hints and de-duplicated tags
    """
    search_text = f"{file_name} {(text or '')[:HINT_SCAN_CHARS]}"

    hints = DocumentHints(
        is_financial=bool(FINANCIAL_PATTERN.search(search_text)),
        is_legal=bool(LEGAL_PATTERN.search(search_text)),
        is_identity=bool(IDENTITY_PATTERN.search(search_text)),
        is_spreadsheet=bool(SPREADSHEET_EXTENSION.search(file_name)),
        is_image=bool(IMAGE_EXTENSION.search(file_name)),
    )

    tags: List[str] = []
    match = analyze_filename(file_name)
    if match:
        hints.filename_type_hint = match.file_type
        hints.filename_category_hint = match.category
        tags.extend(match.tags)

    if hints.is_financial:
        tags.append("financial")
    if hints.is_legal:
        tags.append("legal")
    if hints.is_identity:
        tags.extend(["kyc", "identity"])
    if hints.is_spreadsheet:
        tags.extend(["spreadsheet", "data"])
    if hints.is_image:
        tags.extend(["images", "photographs"])

    hints.matched_tags = list(dict.fromkeys(tags))
    return hints


# ---------------------------------------------------------------------------
# Content extraction
# ---------------------------------------------------------------------------

def resolve_media_type(file_name: str, declared: Optional[str]) -> str:
    """Prefer the declared media type, then a filename guess."""
    if declared and declared.strip() and declared != "application/octet-stream":
        return declared.strip().lower()
    guessed, _ = mimetypes.guess_type(file_name)
    return guessed or "application/octet-stream"


def _is_pdf(file_name: str, media_type: str) -> bool:
    return media_type == "application/pdf" or file_name.lower().endswith(".pdf")


def _is_spreadsheet(file_name: str, media_type: str) -> bool:
    return (
        "spreadsheet" in media_type
        or "excel" in media_type
        or media_type == "text/csv"
        or bool(SPREADSHEET_EXTENSION.search(file_name))
    )


def format_spreadsheet_summary(summary: SpreadsheetSummary) -> str:
    """Render a workbook preview as plain text for the classifier."""
    lines = [f"Sheets: {', '.join(summary.sheet_names)}"]
    for preview in summary.sheet_previews:
        lines.append(f"\n### Sheet: {preview.sheet_name} ({preview.total_rows} rows)")
        if preview.headers:
            lines.append("Headers: " + " | ".join(preview.headers))
        for row in preview.sample_rows:
            lines.append(" | ".join(row))
    return "\n".join(lines)


def _build_content(
    upload: UploadedFile,
    media_type: str,
    extracted_text: Optional[str],
) -> DocumentContent:
    """Choose the content representation for one file."""
    name = upload.file_name
    text = extracted_text if extracted_text and extracted_text.strip() else None

    if _is_pdf(name, media_type):
        if text:
            return TextContent(text=truncate_head_tail(text, MAX_TEXT_CHARS, HEAD_RATIO))
        if upload.content:
            encoded = base64.b64encode(upload.content).decode("ascii")
            return PdfPagesContent(pages=[PdfPage(data=encoded)])
        return TextContent(text=PDF_PLACEHOLDER)

    if media_type.startswith("image/"):
        if upload.content:
            encoded = base64.b64encode(upload.content).decode("ascii")
            return ImageContent(data=encoded, media_type=media_type)
        return TextContent(text=IMAGE_PLACEHOLDER)

    if _is_spreadsheet(name, media_type):
        if upload.spreadsheet_summary:
            preview = format_spreadsheet_summary(upload.spreadsheet_summary)
            return SpreadsheetContent(
                text=truncate_head_tail(preview, MAX_TEXT_CHARS, HEAD_RATIO),
                summary=upload.spreadsheet_summary,
            )
        if text:
            return SpreadsheetContent(text=truncate_head_tail(text, MAX_TEXT_CHARS, HEAD_RATIO))
        return SpreadsheetContent(text=SPREADSHEET_PLACEHOLDER)

    if text is None and upload.content:
        text = upload.content.decode("utf-8", errors="replace")
    if not text or not text.strip():
        return TextContent(text=UNREADABLE_PLACEHOLDER)
    return TextContent(text=truncate_head_tail(text, MAX_TEXT_CHARS, HEAD_RATIO))


async def preprocess_document(
    upload: UploadedFile,
    index: int,
    extracted_text: Optional[str] = None,
) -> BatchDocument:
    """Turn one upload into a ``BatchDocument``.

    Args:
        upload: Raw file with name, bytes and optional declared media type
        index: Position of the file in the request
        extracted_text: Pre-extracted text, if the caller has it

    Returns:
        BatchDocument with content and hints; never raises
    """
    media_type = resolve_media_type(upload.file_name, upload.media_type)
    hints = analyze_characteristics(upload.file_name, extracted_text)

    try:
        content = _build_content(upload, media_type, extracted_text)
    except Exception as e:
        logger.warning("Preprocessing failed for %s (index %d): %s", upload.file_name, index, e)
        content = TextContent(text=UNREADABLE_PLACEHOLDER)

    return BatchDocument(
        index=index,
        file_name=upload.file_name,
        file_size=len(upload.content),
        media_type=media_type,
        processed_content=content,
        hints=hints,
        extracted_text=extracted_text,
    )


async def preprocess_batch(
    uploads: Sequence[UploadedFile],
    extracted_texts: Optional[Dict[int, str]] = None,
) -> List[BatchDocument]:
    """Preprocess every upload concurrently; output order matches input order."""
    extracted_texts = extracted_texts or {}
    return list(await asyncio.gather(*(
        preprocess_document(upload, index, extracted_texts.get(index))
        for index, upload in enumerate(uploads)
    )))
