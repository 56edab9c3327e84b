"""
assembler.py

Merges a structured prescription with warnings from other sources
(e.g. the drug-interaction check) into the record returned to callers.
"""

from typing import Iterable

from rx_intake.schemas.prescription import PrescriptionWarning, StructuredPrescription


def assemble(
    structured: StructuredPrescription,
    warnings: Iterable[PrescriptionWarning] = (),
) -> StructuredPrescription:
    """
    Return a new record: model warnings first, then external ones.

    Duplicates are kept on purpose; two sources may rate the same
    issue with different severities.
    """

    external = tuple(warnings)
    if not external:
        return structured
    return structured.model_copy(update={"warnings": structured.warnings + external})
