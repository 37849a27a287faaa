"""
Services talking to the external completion API.

Exports:
- CompletionClient: OpenAI-compatible chat-completions client (JSON mode)
- CropAdvisor: crop, disease, chat and market advisory operations
"""
from .llm import CompletionClient, extract_json_object
from .advisor import CropAdvisor, SUPPORTED_LANGUAGES, language_name

__all__ = [
    'CompletionClient',
    'extract_json_object',
    'CropAdvisor',
    'SUPPORTED_LANGUAGES',
    'language_name',
]
