"""
interactions.py

Optional drug-interaction check for an extracted medication.

This is a thin wrapper around one GPT call. It is NOT part of the core
structuring step: the pipeline calls it (when enabled) and hands the
returned warnings to the assembler, after the model's own warnings.

If the call fails the checker does not fail the request. It returns a
generic "consult your pharmacist" warning instead, so the pharmacist
still sees that interactions were not checked automatically.
"""

import asyncio
import json
import logging
from typing import List, Optional

from openai import AsyncOpenAI, OpenAIError
from pydantic import TypeAdapter, ValidationError

from rx_intake.schemas.prescription import Medication, PrescriptionWarning
from rx_intake.services.extractor import DEFAULT_MODEL

logger = logging.getLogger(__name__)

_WARNINGS = TypeAdapter(List[PrescriptionWarning])

INTERACTION_PROMPT = """You are a pharmaceutical expert. Analyze the following medication and list
potential drug interactions, dosage concerns and usage warnings.

Medication: {name}
Dosage: {dosage}
Frequency: {frequency}
Instructions: {instructions}

Return ONLY a JSON object of the form {{"warnings": [...]}} where each warning is:
{{"type": "interaction|unclear|error", "message": "short warning, 20 words max", "severity": "low|medium|high"}}

Include common interactions with other medications, foods, alcohol and conditions,
and flag the dosage if it looks unusual. Include 3-5 warnings total.
"""


def default_warnings() -> List[PrescriptionWarning]:
    """Fallback used when the interaction check is unavailable."""

    return [
        PrescriptionWarning(
            type="interaction",
            message="Automatic interaction check unavailable; consult the pharmacist about drug interactions",
            severity="medium",
        )
    ]


class InteractionChecker:
    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_MODEL,
        timeout_seconds: float = 30.0,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.client = client
        if self.client is None and api_key:
            self.client = AsyncOpenAI(api_key=api_key, timeout=timeout_seconds)

    async def check(self, medication: Medication) -> List[PrescriptionWarning]:
        if not medication.name.strip():
            return []

        if self.client is None:
            logger.warning("Interaction check skipped: OpenAI API key is not configured")
            return default_warnings()

        prompt = INTERACTION_PROMPT.format(
            name=medication.name,
            dosage=medication.dosage or "Not specified",
            frequency=medication.frequency or "Not specified",
            instructions=medication.instructions or "Not specified",
        )

        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": prompt}],
                    response_format={"type": "json_object"},
                    temperature=0.2,
                    max_tokens=800,
                ),
                timeout=self.timeout_seconds,
            )
            data = json.loads(response.choices[0].message.content or "")
            warnings = _WARNINGS.validate_python(data.get("warnings", []))
        except (OpenAIError, asyncio.TimeoutError) as e:
            logger.error(f"Interaction check failed: {e or 'timeout'}")
            return default_warnings()
        except (json.JSONDecodeError, AttributeError, IndexError, ValidationError) as e:
            logger.error(f"Interaction check returned unusable output: {e}")
            return default_warnings()

        logger.info(f"Interaction check for '{medication.name}': {len(warnings)} warning(s)")
        return warnings
