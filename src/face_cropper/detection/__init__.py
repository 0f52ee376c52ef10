"""Face detection: dispatcher, background worker and quality scoring."""
