"""
Command-line interface for the document filing pipeline.

Usage:
    python -m docfiling classify <directory> [OPTIONS]
    python -m docfiling skills
"""

import argparse
import asyncio
import glob
import os
import sys
from typing import Dict, List, Tuple

from docfiling.config import get_settings
from docfiling.exceptions import SkillConfigurationError
from docfiling.logging_config import configure_logging
from docfiling.models.documents import UploadedFile
from docfiling.models.pipeline import ClientContext, PipelineConfig, PipelineResult
from docfiling.services.pipeline import run_pipeline
from docfiling.services.skill_loader import list_skills

# Files whose bytes are read as the document's full text
TEXT_EXTENSIONS = {".txt", ".md", ".csv", ".eml", ".json"}


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="docfiling",
        description="Document filing CLI - classify and place document batches locally"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    classify_parser = subparsers.add_parser(
        "classify",
        help="Classify every matching file in a directory as one batch"
    )
    classify_parser.add_argument(
        "directory",
        type=str,
        help="Directory containing the documents"
    )
    classify_parser.add_argument(
        "--pattern",
        "-p",
        type=str,
        default="*",
        help="Glob pattern for files (default: *)"
    )
    classify_parser.add_argument(
        "--client-name",
        type=str,
        default=None,
        help="Client name, used for the document code shortcode"
    )
    classify_parser.add_argument(
        "--client-type",
        type=str,
        default=None,
        help="Client type, e.g. lender or borrower (affects placement)"
    )
    classify_parser.add_argument(
        "--mock",
        action="store_true",
        help="Use the offline mock classifier even if GEMINI_API_KEY is set"
    )
    classify_parser.add_argument(
        "--deadline",
        type=float,
        default=None,
        help="Overall deadline for the run in seconds"
    )
    classify_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the full pipeline result as JSON"
    )

    subparsers.add_parser("skills", help="List available instruction skills")

    return parser


def load_directory(directory: str, pattern: str) -> Tuple[List[UploadedFile], Dict[int, str]]:
    """Read matching files in name order, plus text for plain-text files."""
    uploads: List[UploadedFile] = []
    texts: Dict[int, str] = {}

    for path in sorted(glob.glob(os.path.join(directory, pattern))):
        if not os.path.isfile(path):
            continue
        with open(path, "rb") as fh:
            content = fh.read()
        index = len(uploads)
        uploads.append(UploadedFile(file_name=os.path.basename(path), content=content))
        if os.path.splitext(path)[1].lower() in TEXT_EXTENSIONS:
            texts[index] = content.decode("utf-8", errors="replace")

    return uploads, texts


def print_result(result: PipelineResult) -> None:
    for doc in result.documents:
        decision = doc.classification
        print(
            f"[{doc.document_index}] {doc.file_name} -> {decision.file_type} "
            f"[{decision.category}] {decision.suggested_folder} ({decision.confidence:.2f})"
        )
    for error in result.errors:
        print(f"[{error.document_index}] {error.file_name} FAILED: {error.error}")

    meta = result.metadata
    print(f"\n{'='*60}")
    print(
        f"DONE: {len(result.documents)}/{meta.batch_size} classified, {len(result.errors)} failed "
        f"(model={meta.model}, calls={meta.api_calls_made}, "
        f"tokens={meta.total_input_tokens}/{meta.total_output_tokens})"
    )


async def classify_command(args: argparse.Namespace) -> int:
    """
    Execute the classify command.

    Returns:
        int: Exit code (0 if at least one document was classified, else 1)
    """
    try:
        settings = get_settings()
    except ValueError as e:
        print(f"Configuration error: {e}")
        return 1

    configure_logging(settings.log_level)

    if not os.path.isdir(args.directory):
        print(f"Error: Not a directory: {args.directory}")
        return 1

    uploads, texts = load_directory(args.directory, args.pattern)
    if not uploads:
        print(f"No files found matching pattern: {args.pattern}")
        return 1
    if len(uploads) > settings.max_batch_files:
        print(f"Error: {len(uploads)} files exceeds the batch limit of {settings.max_batch_files}")
        return 1

    if args.deadline is not None and args.deadline <= 0:
        print("Error: --deadline must be greater than 0")
        return 1

    config = PipelineConfig(use_mock=args.mock, deadline_seconds=args.deadline)
    context = ClientContext(client_name=args.client_name, client_type=args.client_type)

    try:
        result = await run_pipeline(
            uploads,
            full_texts=texts,
            client_context=context,
            config=config,
            settings=settings,
        )
    except SkillConfigurationError as e:
        print(f"Skill configuration error: {e}")
        return 1

    if args.json:
        print(result.model_dump_json(indent=2))
    else:
        print_result(result)

    return 0 if result.documents else 1


def skills_command() -> int:
    try:
        settings = get_settings()
        skills = list_skills(settings.skills_dir)
    except (ValueError, SkillConfigurationError) as e:
        print(f"Configuration error: {e}")
        return 1

    if not skills:
        print(f"No skills found in {settings.skills_dir}")
        return 1
    for skill in skills:
        print(f"{skill.name}: {skill.description}")
    return 0


def main() -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    if args.command == "classify":
        return asyncio.run(classify_command(args))
    if args.command == "skills":
        return skills_command()

    print(f"Unknown command: {args.command}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
