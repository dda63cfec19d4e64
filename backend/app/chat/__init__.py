"""
chat — Delivery of chat turns to the conversational webhook.

Sub-modules:
    webhook_client  — DeliveryClient: bounded retries, reply extraction, fallbacks
    chat_service    — Turn orchestration: validation, transcript entries, sessions
    replies         — Reply inspection (HTML, startup-cards block)
    models          — Data structures shared across the package
"""
