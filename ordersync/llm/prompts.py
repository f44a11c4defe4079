"""
Prompt text for the order oracle.

Two prompts:
- CLASSIFIER_SYSTEM_INSTRUCTION: batch relevance verdicts keyed "email_<index>"
- EXTRACTOR_SYSTEM_INSTRUCTION: one order record per email (or null)
"""

from __future__ import annotations

import json

from ordersync.config import PIPELINE_BODY_TRUNCATION
from ordersync.utils.redaction import sanitize_for_prompt

CLASSIFIER_KEY_PREFIX = "email_"


CLASSIFIER_SYSTEM_INSTRUCTION = """You identify e-commerce and order-related emails.

Decide for each email whether it is related to:
1. Order confirmations or receipts
2. Shipping notifications
3. Delivery updates
4. Order status changes
5. Return or refund processes
6. Order cancellations
7. Payment confirmations or failures for orders

Key indicators:
- Sender domains of known e-commerce platforms
- Order or tracking number patterns
- Shipping and delivery terminology
- Transaction confirmation language

Exclude:
- Marketing and promotional emails
- Newsletters
- Account notifications and password resets
- Wishlist notifications and shopping cart reminders

## Input
A JSON array of {"index", "subject", "sender"} objects.

## Output format
A JSON object whose keys are "email_<index>" and whose values are booleans
(true = order-related). Include every index you were given.

Example:
{"email_0": true, "email_1": false, "email_2": true}"""


EXTRACTOR_SYSTEM_INSTRUCTION = """You extract order details from e-commerce emails.

## Required fields
- orderId (string): the vendor's order or confirmation number (e.g. "ORD-123", "112-4567890-1234567").
  Do NOT use payment or transaction IDs (e.g. "TXN123", "PAY789").
  Use an empty string if no order number is present.
- vendor (string): the store or company that processed the order.
- latestStatus (string): the current order status, one of:
  ordered, confirmed, processing, packed, shipped, out_for_delivery, delivered,
  cancelled, payment_failed, returned

## Optional fields
- totalAmount (number): total purchase amount without currency symbol.
- currency (string): ISO 4217 code. Default "USD".
- orderDate (string): ISO 8601 date the order was placed.
- trackingUrl (string): complete tracking URL, only if fully present.
- metadata (object): extras such as itemCount, shippingCost, taxAmount,
  estimatedDelivery, paymentMethod, items.
- statusHistory (array): status changes, each {"status", "timestamp", "emailId"}.
- returnInfo (object): {"status", "initiatedDate", "trackingUrl"} where status is one of:
  initiated, return_label_created, pickup_scheduled, in_transit, picked_up, received, refunded

## Guidelines
1. Dates in ISO 8601 (YYYY-MM-DDTHH:MM:SSZ).
2. Amounts as numbers.
3. Use the most specific status the email supports.
4. Respond with the JSON value null if the email is not about a specific order.

## Example

Email:
{"subject": "Your Nike.com order has shipped", "sender": "Nike <nikeonline@nike.com>", "timestamp": "2025-01-12T09:30:00Z", "body": "Order C02849371 is on the way. Track: https://nike.com/track/C02849371. Total $130.00"}

Extraction:
{"orderId": "C02849371", "vendor": "Nike", "totalAmount": 130.00, "currency": "USD", "orderDate": null, "latestStatus": "shipped", "trackingUrl": "https://nike.com/track/C02849371", "statusHistory": [{"status": "shipped", "timestamp": "2025-01-12T09:30:00Z", "emailId": null}], "returnInfo": null, "metadata": {"itemCount": 1}}"""


def build_classifier_prompt(items: list[tuple[str, str]]) -> str:
    """Render (subject, sender) pairs as the indexed JSON list the classifier expects."""
    payload = [
        {
            "index": index,
            "subject": sanitize_for_prompt(subject, max_length=300),
            "sender": sanitize_for_prompt(sender, max_length=200),
        }
        for index, (subject, sender) in enumerate(items)
    ]
    return "Classify these emails:\n" + json.dumps(payload, ensure_ascii=False)


def build_extractor_prompt(subject: str, body: str, sender: str, timestamp: str) -> str:
    payload = {
        "subject": sanitize_for_prompt(subject, max_length=300),
        "sender": sanitize_for_prompt(sender, max_length=200),
        "timestamp": timestamp,
        "body": sanitize_for_prompt(body, max_length=PIPELINE_BODY_TRUNCATION),
    }
    return "Email:\n" + json.dumps(payload, ensure_ascii=False) + "\n\nExtraction:"
