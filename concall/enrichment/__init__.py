from .gemini_client import Enrichment, GeminiEnrichmentClient, extract_guidance_text, guidance_prompt
from .retry_policy import backoff_delay, call_with_retry, is_transient

__all__ = [
    "Enrichment",
    "GeminiEnrichmentClient",
    "backoff_delay",
    "call_with_retry",
    "extract_guidance_text",
    "guidance_prompt",
    "is_transient",
]
