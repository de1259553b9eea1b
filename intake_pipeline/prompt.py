"""Prompt construction helpers."""

from __future__ import annotations

from typing import Any, Dict, List

from .schema import ExtractionRequest

SYSTEM_PROMPT = (
    "You are analyzing a car repair order (заказ-наряд) from a Russian auto service center. "
    "Extract the data and respond only with a valid JSON object matching this schema, no markdown, no explanation: "
    '{"plateNumber": "license plate (госномер) or null", "vin": "VIN or null", "mileage": 123456, '
    '"city": "city or null", "date": "date string or null", '
    '"items": [{"workName": "name of work or part", "quantity": 1, "price": 1000, "total": 1000}], '
    '"needsOperatorReview": false, "reviewReason": null}. '
    "price is the price per unit and total is quantity multiplied by price. "
    "Use null for mileage when it is not printed. "
    "Set needsOperatorReview to true and explain why in reviewReason when the data is unclear or incomplete, "
    "and always when you cannot clearly identify the plate number or the VIN."
)


def build_user_prompt(request: ExtractionRequest) -> str:
    """Create the user turn for a text document."""
    sections: List[str] = [f"Document: {request.source_name}"]

    text = (request.text or "").strip()
    if text:
        sections.append(f"Text to analyze:\n{text}")
    else:
        sections.append("Text to analyze: <empty>")

    return "\n".join(sections)


def build_messages(request: ExtractionRequest) -> List[Dict[str, Any]]:
    """Return the chat message payload for the OpenAI API."""
    if request.is_image:
        mime_type = request.mime_type or "image/jpeg"
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": f"Document: {request.source_name}"},
                    {
                        "type": "image_url",
                        "image_url": {
                            "url": f"data:{mime_type};base64,{request.image_base64}",
                            "detail": "high",
                        },
                    },
                ],
            },
        ]

    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_user_prompt(request)},
    ]
