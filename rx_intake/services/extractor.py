"""
extractor.py

AI-powered extractor that converts OCR text from a prescription
into a StructuredPrescription.

This service uses OpenAI GPT to map free text onto a fixed shape:
- patientInfo: name, dateOfBirth, id
- medication: name, dosage, frequency, instructions
- prescriber: name, npi, date
- warnings: anything the model found unclear or erroneous

Failures are reported in two distinct categories:
- StructuringCallFailure: the API call itself failed
  (network, auth, quota, timeout)
- StructuringParseFailure: the call worked but the answer is not
  JSON, or is JSON that does not fit the schema

There are no retries here. A failed call is reported once.
"""

import asyncio
import json
import logging
from typing import Optional

from openai import AsyncOpenAI, OpenAIError
from pydantic import ValidationError

from rx_intake.errors import StructuringCallFailure, StructuringParseFailure
from rx_intake.schemas.prescription import StructuredPrescription

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"

SYSTEM_PROMPT = (
    "You are a medical prescription analyzer working for a pharmacy. "
    "You read OCR text of a prescription and return only valid JSON."
)

PRESCRIPTION_PROMPT = """Extract the following information from this prescription text:
- Patient information (name, date of birth, ID)
- Medication details (name, dosage, frequency, instructions)
- Prescriber information (name, NPI number, date)
- Warnings about anything unclear, illegible or likely erroneous

Prescription Text:
{raw_text}

Return ONLY a JSON object with exactly this structure:
{{
    "patientInfo": {{"name": "", "dateOfBirth": "", "id": ""}},
    "medication": {{"name": "", "dosage": "", "frequency": "", "instructions": ""}},
    "prescriber": {{"name": "", "npi": "", "date": ""}},
    "warnings": [
        {{"type": "interaction|unclear|error", "message": "", "severity": "low|medium|high"}}
    ]
}}

RULES:
1. If a field is unclear or missing, use an empty string for it
2. Keep medication names exactly as written, including strength (e.g. "Amoxicillin 500mg")
3. Keep frequency wording as written (e.g. "three times daily")
4. Add an "unclear" warning for every field you had to guess
5. Add an "error" warning for dosages or dates that look wrong
6. Return an empty warnings list if there is nothing to flag
7. No explanations, no markdown, only the JSON object
"""


def clean_json_text(result_text: str) -> str:
    """
    Cut the JSON object out of a model answer.

    Handles markdown code fences and prose before/after the object.
    """

    result_text = result_text.strip()

    if "```" in result_text:
        parts = result_text.split("```")
        if len(parts) >= 2:
            result_text = parts[1].strip()
            if result_text.lower().startswith("json"):
                result_text = result_text[4:].strip()

    start = result_text.find("{")
    end = result_text.rfind("}")
    if start != -1 and end != -1:
        result_text = result_text[start:end + 1]

    return result_text


def parse_structured_response(result_text: Optional[str]) -> StructuredPrescription:
    """
    Treat the model answer as untrusted text and validate it.

    Raises StructuringParseFailure when the text is not a JSON object
    or when required groups/keys are missing.
    """

    if not result_text or not result_text.strip():
        raise StructuringParseFailure(result_text or "", "Model returned an empty response")

    try:
        data = json.loads(clean_json_text(result_text))
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse JSON: {e}")
        logger.debug(f"Response was: {result_text[:500]}")
        raise StructuringParseFailure(result_text, "Model response was not valid JSON")

    if not isinstance(data, dict):
        raise StructuringParseFailure(result_text, "Model response was not a JSON object")

    try:
        return StructuredPrescription.model_validate(data)
    except ValidationError as e:
        missing = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        logger.error(f"Model response failed schema validation: {missing}")
        logger.debug(f"Response was: {result_text[:500]}")
        raise StructuringParseFailure(
            result_text,
            f"Model response did not match the prescription schema ({missing})"
        )


class AIExtractorService:
    """
    AIExtractorService structures prescription text with GPT.

    The OpenAI client is created per service instance;
    the pipeline receives the service as a dependency.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_MODEL,
        timeout_seconds: float = 60.0,
        client: Optional[AsyncOpenAI] = None,
    ):
        """
        Parameters:
        - api_key: OpenAI API key
        - model: chat model used for extraction
        - timeout_seconds: deadline for one extraction call
        - client: pre-built client (tests pass a fake here)
        """

        self.model = model
        self.timeout_seconds = timeout_seconds
        self.client = client

        # Without a key the service still builds; every call then fails cleanly
        if self.client is None and api_key:
            self.client = AsyncOpenAI(api_key=api_key, timeout=timeout_seconds)

    async def structure_fields(self, raw_text: str) -> StructuredPrescription:
        """
        Extract a StructuredPrescription from OCR text.

        What happens here:
        1. Send raw text to GPT with the fixed output schema
        2. Bound the call by timeout_seconds
        3. Validate the answer against StructuredPrescription
        """

        if self.client is None:
            raise StructuringCallFailure("OpenAI API key is not configured")

        logger.info(f"Structuring prescription text ({len(raw_text)} characters)")

        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": PRESCRIPTION_PROMPT.format(raw_text=raw_text)},
                    ],
                    response_format={"type": "json_object"},
                    temperature=0.05,
                    max_tokens=1500,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(f"Extraction call timed out after {self.timeout_seconds:g}s")
            raise StructuringCallFailure(f"Language model did not respond within {self.timeout_seconds:g} seconds")
        except OpenAIError as e:
            logger.error(f"Extraction call failed: {e}")
            raise StructuringCallFailure(str(e) or e.__class__.__name__)

        try:
            result_text = response.choices[0].message.content
        except (AttributeError, IndexError) as e:
            raise StructuringParseFailure(str(response), f"Unexpected response shape: {e}")

        structured = parse_structured_response(result_text)

        logger.info(
            f"Structured prescription: medication='{structured.medication.name}', "
            f"{len(structured.warnings)} model warning(s)"
        )
        return structured
