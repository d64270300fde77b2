"""
Diagnostic script for OCR extraction.

Checks:
1. OCR payload validity and size (pages, tables, text length).
2. Unit scale detection and its evidence.
3. Extracted codes with provenance and the readiness verdict.
"""
import json
import sys
from pathlib import Path

from luxgate.engine import PipelineOptions, run_pipeline
from luxgate.exceptions import LuxGateError
from luxgate.logging_config import configure_logging
from luxgate.schemas.ocr import OcrDocument

# Console logs, the report goes to stdout
configure_logging(json_logs=False)


def diagnose(path: Path) -> int:
    print(f"\n--- Diagnosing: {path.name} ---")

    if not path.exists():
        print(f"File not found: {path}")
        return 1

    # 1. Payload
    print("Checking OCR payload...")
    with path.open(encoding="utf-8") as f:
        payload = json.load(f)
    try:
        document = OcrDocument.from_payload(payload)
    except LuxGateError as e:
        print(f"  Invalid payload: {e.message}")
        return 1
    print(f"  Pages: {len(document.pages)}  Tables: {document.table_count}  Text length: {len(document.full_text)}")

    try:
        result = run_pipeline(document, PipelineOptions(document_id=path.stem))
    except LuxGateError as e:
        print(f"  Extraction aborted: [{e.error_code}] {e.message}")
        return 1

    # 2. Scale
    scale = result.unit_scale_detection
    print("\nUnit scale:")
    print(f"  {scale.scale.value} (confidence {scale.confidence:.2f}, source {scale.source.value})")
    for item in scale.evidence:
        print(f"    - {item}")
    if scale.uncertain:
        print("  -> UNCERTAIN, manual confirmation required")

    # 3. Codes and verdict
    print(f"\nExtracted codes ({len(result.extracted_codes)}), reference column: "
          f"{result.metadata.reference_column_detected}")
    for code in result.extracted_codes:
        print(
            f"  {code.code:>6}  {code.caption[:40]:<40}  {code.current_value!s:>16}  "
            f"p{code.page}  {code.confidence:.2f}  {code.match_source.value}"
        )

    gates = result.pre_analysis_gates
    print(f"\nReadiness: {gates.readiness_level.value}")
    for issue in gates.blocking_issues:
        print(f"  BLOCKING: {issue}")
    for warning in gates.warnings:
        print(f"  WARNING: {warning}")
    for action in gates.required_review_actions:
        print(f"  REVIEW [{action.priority.value}] {action.action_type.value}: {action.description}")
    return 0


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python scripts/debug_extraction.py <ocr.json> [...]")
        sys.exit(2)
    status = 0
    for arg in sys.argv[1:]:
        status = max(status, diagnose(Path(arg)))
    sys.exit(status)
