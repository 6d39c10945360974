"""Deterministic filing placement.

Runs after classification regardless of which classifier produced it.
Rules are evaluated in priority order, first match wins:

1. Client type override (e.g. lenders file term sheets as outgoing)
2. File type override (types whose category default is wrong)
3. Category default
4. The classifier's own suggestion, if it names a known folder
5. Miscellaneous at client level

Every result records the reason and whether the classifier's suggestion
was overridden, so overrides can be audited.
"""

from typing import Dict, NamedTuple, Optional, Sequence

from docfiling.models.classification import DocumentClassification
from docfiling.models.pipeline import ClientContext, PlacementResult

FALLBACK_FOLDER = "miscellaneous"


class FolderDefinition(NamedTuple):
    name: str
    level: str
    description: str


class Placement(NamedTuple):
    folder_key: str
    level: str


FOLDER_DEFINITIONS: Dict[str, FolderDefinition] = {
    # Client level
    "background": FolderDefinition("Background", "client", "Client background documents and general info"),
    "kyc": FolderDefinition("KYC", "client", "Know Your Customer and identity documents"),
    "background_docs": FolderDefinition("Background Docs", "client", "Additional background documentation"),
    "miscellaneous": FolderDefinition("Miscellaneous", "client", "Uncategorized documents"),
    # Project level
    "appraisals": FolderDefinition("Appraisals", "project", "Valuations, appraisals, surveys, plans"),
    "terms_comparison": FolderDefinition("Terms Comparison", "project", "Loan terms, facility letters, legal docs"),
    "terms_request": FolderDefinition("Terms Request", "project", "Outgoing terms and proposals"),
    "credit_submission": FolderDefinition("Credit Submission", "project", "Credit papers and submissions"),
    "post_completion": FolderDefinition("Post Completion", "project", "Post-completion docs, insurance, monitoring"),
    "notes": FolderDefinition("Notes", "project", "Meeting notes, correspondence, memos"),
    "operational_model": FolderDefinition("Operational Model", "project", "Financial models, cashflows, projections"),
}

CATEGORY_PLACEMENT: Dict[str, Placement] = {
    "appraisals": Placement("appraisals", "project"),
    "legal documents": Placement("terms_comparison", "project"),
    "loan terms": Placement("terms_comparison", "project"),
    "inspections": Placement("post_completion", "project"),
    "professional reports": Placement("appraisals", "project"),
    "plans": Placement("appraisals", "project"),
    "insurance": Placement("post_completion", "project"),
    "photographs": Placement("appraisals", "project"),
    "kyc": Placement("kyc", "client"),
    "communications": Placement("notes", "project"),
    "financial documents": Placement("background", "client"),
    "other": Placement("miscellaneous", "client"),
}

FILE_TYPE_OVERRIDES: Dict[str, Placement] = {
    # Categorized as Appraisals but lives with the financial model
    "cashflow": Placement("operational_model", "project"),
    "bank statement": Placement("kyc", "client"),
    "facility letter": Placement("terms_comparison", "project"),
    "personal guarantee": Placement("terms_comparison", "project"),
    "initial monitoring report": Placement("post_completion", "project"),
    "interim monitoring report": Placement("post_completion", "project"),
    "insurance policy": Placement("post_completion", "project"),
    "insurance certificate": Placement("post_completion", "project"),
    "tax return": Placement("kyc", "client"),
    "certificate of incorporation": Placement("kyc", "client"),
    "invoice": Placement("operational_model", "project"),
}

CLIENT_TYPE_OVERRIDES: Dict[str, Dict[str, Placement]] = {
    # Lenders issue terms: outgoing
    "lender": {
        "indicative terms": Placement("terms_request", "project"),
        "credit backed terms": Placement("terms_request", "project"),
    },
    # Borrowers receive terms: incoming, compared side by side
    "borrower": {
        "indicative terms": Placement("terms_comparison", "project"),
        "credit backed terms": Placement("terms_comparison", "project"),
    },
}

TYPE_ABBREVIATIONS: Dict[str, str] = {
    "RedBook Valuation": "VAL",
    "Appraisal": "APPRAISAL",
    "Cashflow": "CASHFLOW",
    "Passport": "PASSPORT",
    "Driving License": "DLICENSE",
    "Bank Statement": "BANKSTMT",
    "Utility Bill": "UTILITY",
    "Certificate of Incorporation": "CERTINC",
    "Tax Return": "TAXRETURN",
    "Facility Letter": "FACILITY",
    "Title Deed": "TITLEDEED",
    "Personal Guarantee": "PG",
    "Indicative Terms": "INDTERMS",
    "Credit Backed Terms": "CBTTERMS",
    "Initial Monitoring Report": "IMR",
    "Interim Monitoring Report": "INTMR",
    "Building Survey": "BLDGSURVEY",
    "Report on Title": "ROT",
    "Floor Plans": "FLRPLAN",
    "Site Plans": "SITEPLAN",
    "Insurance Policy": "INSPOLICY",
    "Insurance Certificate": "INSCERT",
    "Invoice": "INVOICE",
    "Email/Correspondence": "EMAIL",
    "Site Photographs": "PHOTO",
}


def get_folder_definition(folder_key: str) -> Optional[FolderDefinition]:
    return FOLDER_DEFINITIONS.get(folder_key)


def _result(placement: Placement, suggested_folder: Optional[str], reason: str) -> PlacementResult:
    folder = FOLDER_DEFINITIONS[placement.folder_key]
    return PlacementResult(
        folder_key=placement.folder_key,
        folder_name=folder.name,
        target_level=placement.level,
        was_overridden=placement.folder_key != suggested_folder,
        reason=reason,
    )


def resolve_placement(
    file_type: str,
    category: str,
    suggested_folder: Optional[str] = None,
    client_type: Optional[str] = None,
) -> PlacementResult:
    """Resolve the final folder and level for one classified document.

    Args:
        file_type: Classified file type
        category: Classified category
        suggested_folder: Folder key suggested by the classifier
        client_type: Client type from the batch context (e.g. "lender")

    Returns:
        PlacementResult; ``folder_key`` is always a key of FOLDER_DEFINITIONS
    """
    type_key = file_type.strip().lower()
    category_key = category.strip().lower()

    client_key = (client_type or "").strip().lower()
    override = CLIENT_TYPE_OVERRIDES.get(client_key, {}).get(type_key)
    if override:
        return _result(
            override, suggested_folder,
            f'Client type "{client_key}" routes "{file_type}" to {override.folder_key}',
        )

    override = FILE_TYPE_OVERRIDES.get(type_key)
    if override:
        return _result(
            override, suggested_folder,
            f'File type "{file_type}" has specific placement rule -> {override.folder_key}',
        )

    default = CATEGORY_PLACEMENT.get(category_key)
    if default:
        return _result(default, suggested_folder, f'Category "{category}" maps to {default.folder_key}')

    if suggested_folder and suggested_folder in FOLDER_DEFINITIONS:
        folder = FOLDER_DEFINITIONS[suggested_folder]
        return PlacementResult(
            folder_key=suggested_folder,
            folder_name=folder.name,
            target_level=folder.level,
            was_overridden=False,
            reason=f"Using model suggestion: {suggested_folder}",
        )

    return PlacementResult(
        folder_key=FALLBACK_FOLDER,
        folder_name=FOLDER_DEFINITIONS[FALLBACK_FOLDER].name,
        target_level="client",
        was_overridden=True,
        reason=f'No placement rule for "{file_type}" ({category}). Defaulting to miscellaneous.',
    )


def resolve_document_placement(doc: DocumentClassification, client_context: ClientContext) -> PlacementResult:
    decision = doc.classification
    return resolve_placement(
        decision.file_type,
        decision.category,
        decision.suggested_folder,
        client_context.client_type,
    )


def resolve_batch_placement(
    documents: Sequence[DocumentClassification],
    client_context: ClientContext,
) -> Dict[int, PlacementResult]:
    """Placement for every classified document, keyed by document index."""
    return {doc.document_index: resolve_document_placement(doc, client_context) for doc in documents}


def get_type_abbreviation(file_type: str) -> str:
    """Short code used in generated document names."""
    abbreviation = TYPE_ABBREVIATIONS.get(file_type)
    if abbreviation:
        return abbreviation
    return "".join(file_type.upper().split())[:10]
