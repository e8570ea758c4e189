"""Pipeline configuration constants: infrastructure env vars live here."""

import os

# Generative model provider (OpenAI-compatible chat completions API)
LLM_API_BASE_URL = os.getenv("LLM_API_BASE_URL", "https://api.openai.com/v1")
LLM_API_KEY = os.getenv("LLM_API_KEY", "")
LLM_DEFAULT_MODEL = os.getenv("LLM_DEFAULT_MODEL", "gpt-4o-mini")

# Push channel: events are POSTed to the API server which fans them out to UI clients.
# Use 127.0.0.1 instead of localhost to avoid IPv6 timeout issues
PUSH_API_BASE_URL = os.getenv("PUSH_API_BASE_URL", "http://127.0.0.1:8000")

# Log directory, configurable for containers
LOG_DIR = os.getenv("LOG_DIR", "")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Company data API used to enrich responses from the respondent's email domain
ENRICHMENT_API_BASE_URL = os.getenv("ENRICHMENT_API_BASE_URL", "")
ENRICHMENT_API_KEY = os.getenv("ENRICHMENT_API_KEY", "")
