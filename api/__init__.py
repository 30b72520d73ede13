"""HTTP API for SentimentAI."""
