"""LLM inference for bill extraction from PDF attachments."""

import base64
import json
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from decimal import Decimal
from typing import Optional

from openai import OpenAI
from pydantic import ValidationError

from ..errors import ExtractionError
from ..models import BillAttachment, BillType, ExtractedBill, ParsedBill

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 0.7
MAX_RETRIES = 1

# Strict output schema sent with every request. Pydantic still validates the reply.
PARSED_BILL_SCHEMA = {
    "type": "object",
    "properties": {
        "type": {
            "type": "string",
            "enum": [bill_type.value for bill_type in BillType],
            "description": ParsedBill.model_fields["type"].description,
        },
        "amount": {
            "type": "number",
            "description": ParsedBill.model_fields["amount"].description,
        },
        "issue_date": {
            "type": "string",
            "description": "ISO 8601 UTC datetime the bill was issued (not the due date)",
        },
        "confidence": {
            "type": "number",
            "description": ParsedBill.model_fields["confidence"].description,
        },
    },
    "required": ["type", "amount", "issue_date", "confidence"],
    "additionalProperties": False,
}

RESPONSE_FORMAT = {
    "type": "json_schema",
    "json_schema": {"name": "parsed_bill", "schema": PARSED_BILL_SCHEMA, "strict": True},
}


class LowConfidenceError(ValueError):
    """Extraction result below the acceptance threshold."""


class BillExtractor:
    """Extracts structured bill data from PDFs using an OpenAI-compatible API."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        model_name: str = "gemini-2.0-flash",
        provider_name: str = "Origin Energy",
        confidence_threshold: float = CONFIDENCE_THRESHOLD,
        retry_delay_sec: float = 1.0,
        max_workers: int = 10,
        timeout: float = 60.0,
        client: Optional[OpenAI] = None,
    ):
        """Initialize bill extractor.

        Args:
            api_url: Base URL for the OpenAI-compatible API
            api_key: API key for the inference provider
            model_name: Model name to use for inference
            provider_name: Utility provider named in the prompt
            confidence_threshold: Minimum confidence for an accepted result
            retry_delay_sec: Fixed wait before the single retry
            max_workers: Concurrent extractions in extract_many
            timeout: Per-request timeout in seconds
            client: Pre-built client (tests inject a stub)
        """
        self.client = client or OpenAI(base_url=api_url, api_key=api_key, timeout=timeout)
        self.model_name = model_name
        self.provider_name = provider_name
        self.confidence_threshold = confidence_threshold
        self.retry_delay_sec = retry_delay_sec
        self.max_workers = max_workers
        logger.info(f"Bill extractor initialized with model: {model_name}")

    def extract(
        self,
        pdf_bytes: bytes,
        mime_type: str = "application/pdf",
        hint: Optional[BillType] = None,
    ) -> ParsedBill:
        """Extract bill data from a PDF, retrying once on failure.

        Args:
            pdf_bytes: Raw PDF content
            mime_type: MIME type of the document
            hint: Advisory bill type from the email subject

        Returns:
            ParsedBill: Validated bill with confidence >= threshold

        Raises:
            ExtractionError: If both attempts fail
        """
        last_error: Optional[Exception] = None

        for attempt in range(MAX_RETRIES + 1):
            try:
                bill = self._attempt(pdf_bytes, mime_type, hint)
                logger.info(
                    f"Parsed {bill.type.value} bill: ${bill.amount} "
                    f"(confidence: {bill.confidence})"
                )
                return bill
            except Exception as e:
                last_error = e
                logger.warning(f"Parsing attempt {attempt + 1} failed: {e}")
                if attempt < MAX_RETRIES:
                    time.sleep(self.retry_delay_sec)

        raise ExtractionError(
            f"Failed to parse bill after {MAX_RETRIES + 1} attempts", cause=last_error
        )

    def extract_many(self, attachments: list[BillAttachment]) -> list[ExtractedBill]:
        """Extract all attachments concurrently, keeping only successes.

        Failures are logged per message and never abort the batch. Results are
        in completion order.
        """
        if not attachments:
            return []

        results: list[ExtractedBill] = []
        workers = max(1, min(self.max_workers, len(attachments)))

        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_attachment = {
                executor.submit(self.extract, att.data, att.mime_type, att.subject_hint): att
                for att in attachments
            }

            for future in as_completed(future_to_attachment):
                att = future_to_attachment[future]
                try:
                    bill = future.result()
                except Exception as e:
                    logger.error(f"Failed to parse bill {att.message_id}: {e}")
                    continue
                results.append(ExtractedBill(bill=bill, message_id=att.message_id))

        logger.info(f"Extracted {len(results)}/{len(attachments)} bills")
        return results

    def _attempt(self, pdf_bytes: bytes, mime_type: str, hint: Optional[BillType]) -> ParsedBill:
        """Run one model call and validate its output."""
        encoded = base64.standard_b64encode(pdf_bytes).decode("utf-8")

        response = self.client.chat.completions.create(
            model=self.model_name,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": self._build_prompt(hint)},
                        {
                            "type": "file",
                            "file": {
                                "filename": "bill.pdf",
                                "file_data": f"data:{mime_type};base64,{encoded}",
                            },
                        },
                    ],
                }
            ],
            temperature=0.1,  # Low temperature for more deterministic output
            response_format=RESPONSE_FORMAT,
            max_tokens=512,
        )

        content = response.choices[0].message.content
        if not content:
            raise ValueError("Model returned an empty response")

        cleaned = self._extract_json(content.strip())
        data = json.loads(cleaned)
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object, got {type(data).__name__}")

        # Keep cents exact
        if isinstance(data.get("amount"), float):
            data["amount"] = Decimal(str(data["amount"]))

        try:
            bill = ParsedBill(**data)
        except ValidationError as e:
            raise ValueError(f"Response failed schema validation: {e}") from e

        if bill.confidence < self.confidence_threshold:
            raise LowConfidenceError(
                f"Low confidence score: {bill.confidence} (threshold: {self.confidence_threshold})"
            )

        return bill

    def _build_prompt(self, hint: Optional[BillType] = None) -> str:
        prompt = f"""Analyze this {self.provider_name} bill PDF and extract the following information:

1. Bill type: one of
   - "electricity" (electricity bill)
   - "hot_water" (gas/heating bill)
   - "water" (water bill)
   - "internet" (broadband/NBN bill)

2. Amount: the total amount due (numeric value only, no currency symbol)

3. Issue date: the date the bill was issued (NOT the due date)
   - ISO 8601 datetime string (YYYY-MM-DDTHH:mm:ss.sssZ)
   - If only a date is available, use midnight UTC (00:00:00.000Z)

4. Confidence: a score between 0 and 1 for your classification"""

        if hint is not None:
            prompt += (
                f"\n\nHint: the email subject suggests this might be a {hint.value} bill, "
                "but verify this against the PDF content."
            )

        prompt += """

Important:
- Look for keywords like "Electricity", "Gas", "Water", "Internet", "Broadband", "NBN"
- Find the total amount due or total charges, including cents
- The issue date is usually at the top of the bill (e.g., "Bill Date", "Invoice Date", "Issued")

Respond with ONLY a JSON object. Do not include markdown blocks or any text before or after the JSON.

Output JSON with these exact fields:
{
  "type": "electricity" or "hot_water" or "water" or "internet",
  "amount": number,
  "issue_date": "YYYY-MM-DDTHH:mm:ss.sssZ",
  "confidence": number between 0 and 1
}"""
        return prompt

    def _extract_json(self, text: str) -> str:
        """Extract JSON from text that may contain markdown code blocks or thinking tags.

        Args:
            text: Response text that may contain JSON

        Returns:
            str: Cleaned JSON string
        """
        # Remove thinking tags if present
        if '<think>' in text or '</think>' in text:
            text = re.sub(r'<think>.*?</think>', '', text, flags=re.DOTALL)
            text = text.strip()

        # Handle markdown code blocks
        if '```' in text:
            json_match = re.search(r'```(?:json)?\s*(\{.*?\})\s*```', text, re.DOTALL)
            if json_match:
                return json_match.group(1)

        # Find the JSON object if it doesn't start with {
        if not text.startswith('{'):
            json_match = re.search(r'\{.*\}', text, re.DOTALL)
            if json_match:
                return json_match.group(0)

        return text
