"""
Prompts for the extraction and verification models.

Both models are asked for bare JSON in the same camelCase shape so the
verified output can replace the extracted output field for field.
"""

import json
from typing import Any, Dict, Optional

EXTRACTION_PROMPT = """Analyze this lab result PDF and extract all data as JSON.

Return ONLY valid JSON in this exact format (no markdown, no code blocks):
{
  "clientName": "Patient full name exactly as shown",
  "clientGender": "male" or "female" or "other",
  "clientBirthday": "YYYY-MM-DD format",
  "labName": "Lab facility name",
  "orderingDoctor": "Doctor name if shown",
  "testDate": "YYYY-MM-DD format of when tests were performed",
  "biomarkers": [
    {
      "name": "Standard English biomarker name",
      "value": 123.4,
      "unit": "primary unit as shown in PDF",
      "secondaryValue": 6.8,
      "secondaryUnit": "alternative unit if shown",
      "referenceMin": 0,
      "referenceMax": 100,
      "flag": "high" or "low" or "normal",
      "confidence": 0.0 to 1.0, how certain you are of this reading
    }
  ]
}

Important:
- Extract ALL biomarkers/tests visible in the document
- TRANSLATE all biomarker names to standard English medical terminology
- Use standard abbreviations where appropriate (e.g., LDL, HDL, TSH, HbA1c, ALT, AST, WBC, RBC)
- Keep the ORIGINAL unit from the PDF as "unit"
- If the PDF shows a secondary value with a different unit, include it as "secondaryValue" and "secondaryUnit"
- Parse numeric values correctly (remove commas, handle decimals)
- Determine flag based on reference range if not explicitly stated
- If a field is not found, omit it from the response
- Return ONLY the JSON object, nothing else"""


PAGE_CONTEXT = """

This PDF is page {page_number} of {total_pages} of a longer report. Extract only what is
visible on this page; patient details may be missing here and that is fine."""


VERIFICATION_PROMPT = """You are verifying a lab result extraction. I'm providing you with:

1. **The original lab result PDF** (attached as a file)
2. **The extracted data from another AI model** (shown below as JSON)

## Extracted Data to Verify:
```json
{extracted_json}
```

## Your Task:
Carefully compare the extracted JSON above against the original PDF and verify accuracy.

## Verification Checklist:
1. Patient name, gender, and birthday - must match PDF exactly
2. Lab name and ordering doctor - must match PDF
3. Test date - must be correct
4. For EACH biomarker, verify against the PDF:
   - Name: Must be in standard English medical terminology
   - Value: Must be exactly correct
   - Unit: Must match the primary unit shown in PDF
   - Secondary value/unit: If PDF shows values in multiple units
   - Reference range: Min and max values must match PDF
   - Flag: Must be correct based on value vs reference range

## Response Format:
Return ONLY valid JSON (no markdown code blocks) with the corrected/verified data:
{{
  "clientName": "verified or corrected value",
  "clientGender": "male" or "female" or "other",
  "clientBirthday": "YYYY-MM-DD",
  "labName": "verified or corrected value",
  "orderingDoctor": "verified or corrected value",
  "testDate": "YYYY-MM-DD",
  "biomarkers": [...],
  "corrections": ["List each correction made"],
  "verificationPassed": true
}}"""


def build_extraction_prompt(page_number: Optional[int] = None, total_pages: Optional[int] = None) -> str:
    if page_number is None or not total_pages or total_pages < 2:
        return EXTRACTION_PROMPT
    return EXTRACTION_PROMPT + PAGE_CONTEXT.format(page_number=page_number, total_pages=total_pages)


def build_verification_prompt(extracted: Dict[str, Any]) -> str:
    return VERIFICATION_PROMPT.format(extracted_json=json.dumps(extracted, indent=2))
