"""
Extraction prompt and the structured-output schema shared by all providers.

The schema uses the OpenAPI-style type names understood by Gemini's
``response_schema``; the local provider embeds the same document as text.
"""

import json
from typing import Any, Dict

BILL_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "accountName": {"type": "STRING", "description": "Account holder's full name, if available."},
        "accountNumber": {"type": "STRING", "description": "The account number."},
        "serviceAddress": {"type": "STRING", "description": "The full service address, if available."},
        "statementDate": {
            "type": "STRING",
            "description": "The main date of the bill statement (e.g., 'October 5, 2017').",
        },
        "servicePeriodStart": {
            "type": "STRING",
            "description": "The start date of the service period, if available (e.g., 'MM/DD/YYYY').",
        },
        "servicePeriodEnd": {
            "type": "STRING",
            "description": "The end date of the service period, if available (e.g., 'MM/DD/YYYY').",
        },
        "totalCurrentCharges": {"type": "NUMBER", "description": "The total amount due for the current period."},
        "dueDate": {"type": "STRING", "description": "The payment due date, if available."},
        "confidenceScore": {
            "type": "NUMBER",
            "description": (
                "A score from 0.0 to 1.0 representing confidence in the extracted data's "
                "accuracy based on image quality. 1.0 is highest confidence."
            ),
        },
        "usageCharts": {
            "type": "ARRAY",
            "description": "An array of all usage charts found on the bill.",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "title": {"type": "STRING", "description": "The title of the chart."},
                    "unit": {
                        "type": "STRING",
                        "description": "The unit of measurement for the usage (e.g., kWh, m³).",
                    },
                    "data": {
                        "type": "ARRAY",
                        "description": "The monthly data points from the chart.",
                        "items": {
                            "type": "OBJECT",
                            "properties": {
                                "month": {
                                    "type": "STRING",
                                    "description": "Abbreviated month name (e.g., Oct, Nov).",
                                },
                                "usage": {
                                    "type": "ARRAY",
                                    "description": "Usage values for each year shown in the chart.",
                                    "items": {
                                        "type": "OBJECT",
                                        "properties": {
                                            "year": {"type": "STRING", "description": "The year of the usage value."},
                                            "value": {
                                                "type": "NUMBER",
                                                "description": "The numerical usage value for that year.",
                                            },
                                        },
                                        "required": ["year", "value"],
                                    },
                                },
                            },
                            "required": ["month", "usage"],
                        },
                    },
                },
                "required": ["title", "unit", "data"],
            },
        },
        "lineItems": {
            "type": "ARRAY",
            "description": "All individual line items from the charges/details section.",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "description": {"type": "STRING", "description": "The description of the charge or credit."},
                    "amount": {
                        "type": "NUMBER",
                        "description": "The corresponding amount. Use negative numbers for payments or credits.",
                    },
                },
                "required": ["description", "amount"],
            },
        },
    },
    "required": ["accountNumber", "totalCurrentCharges", "usageCharts", "lineItems"],
}

EXTRACTION_PROMPT = """You are an expert OCR system specializing in utility bills from ANY provider. \
Your primary goal is to analyze the provided image, even if it is of low quality, and extract the \
required information with high accuracy.

**Instructions:**
- Analyze the provided utility bill image and extract the information below.
- Format your response strictly as a JSON object that adheres to the provided schema. Do not include \
any introductory text, explanations, or markdown formatting.
- **Data in Charts**: Carefully estimate the values from the bar heights relative to the y-axis if \
exact numbers aren't present.
- **Confidence Score**: Based on the image clarity, provide a confidence score between 0.0 (not \
confident) and 1.0 (very confident).
- **Final Check**: Ensure every required field in the schema is present. If an optional field is not \
found, omit it from the final JSON."""


def build_local_system_prompt() -> str:
    """System message for servers without a native structured-output mode."""
    return (
        "You are an API that exclusively returns JSON. Do not include any conversational text, "
        "explanations, or markdown formatting like ```json. Your entire response must be a single, "
        "raw JSON object that strictly adheres to the provided schema.\n\n"
        f"User Request: {EXTRACTION_PROMPT}\n"
        f"JSON Schema: {json.dumps(BILL_SCHEMA)}"
    )
