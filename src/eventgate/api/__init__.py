"""HTTP surface for proposal ingestion and Telegram webhooks."""
