"""
LLM Transaction Categorization

Last step of the categorization cascade before falling back to
"Uncategorized". Uses a local LLM served by Ollama and only accepts answers
naming one of the categories available to the user.
"""

import re
import json
import logging
from typing import Optional, List

import requests

from budget_app.config import settings

logger = logging.getLogger(__name__)


class LLMCategorizationService:
    """Service for LLM-assisted transaction categorization."""

    def __init__(self, ollama_url: Optional[str] = None, model: Optional[str] = None, enabled: Optional[bool] = None):
        self.ollama_url = ollama_url or settings.OLLAMA_URL
        self.model = model or settings.OLLAMA_MODEL
        if enabled is None:
            enabled = settings.OLLAMA_ENABLED and self._check_ollama_availability()
        self.enabled = enabled

    def _check_ollama_availability(self) -> bool:
        """Check if Ollama service is available."""
        try:
            response = requests.get(f"{self.ollama_url}/api/tags", timeout=2)
            return response.status_code == 200
        except requests.RequestException as e:
            logger.warning(f"Ollama not available: {e}. LLM categorization disabled.")
            return False

    def _build_prompt(self, description: str, amount: float, available_categories: List[str]) -> str:
        direction = "outgoing money" if amount > 0 else "incoming money"
        category_list = ", ".join(available_categories)
        return f"""You are a financial transaction categorization expert. Choose the category for this transaction.

Transaction Details:
- Description: "{description}"
- Amount: ${abs(amount):.2f} ({direction})

Available Categories: {category_list}

Choose the SINGLE most appropriate category from the available list.

Respond in this EXACT JSON format:
{{
  "category": "category name"
}}

Response:"""

    def categorize(self, description: str, amount: float, available_categories: List[str]) -> Optional[str]:
        """
        Ask the LLM for a category name.

        Returns:
            One of available_categories, or None when the LLM is disabled,
            unreachable or answers with something else.
        """
        if not self.enabled or not available_categories:
            return None

        try:
            response = requests.post(
                f"{self.ollama_url}/api/generate",
                json={
                    "model": self.model,
                    "prompt": self._build_prompt(description, amount, available_categories),
                    "stream": False,
                    "options": {
                        "temperature": 0.1,
                        "top_p": 0.9,
                        "num_predict": 50,
                    }
                },
                timeout=30
            )
        except requests.exceptions.Timeout:
            logger.warning("LLM request timed out")
            return None
        except requests.RequestException as e:
            logger.error(f"LLM categorization error: {e}")
            return None

        if response.status_code != 200:
            logger.error(f"Ollama API error: {response.status_code}")
            return None

        llm_output = response.json().get("response", "")
        json_match = re.search(r'\{[^}]+\}', llm_output)
        if not json_match:
            logger.warning("LLM response did not contain JSON")
            return None

        try:
            category = json.loads(json_match.group()).get("category")
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse LLM JSON response: {e}")
            return None

        if category in available_categories:
            logger.info(f"LLM categorized '{description}' as '{category}'")
            return category

        logger.warning(f"LLM suggested invalid category: {category}")
        return None


# Singleton instance
_llm_service = None

def get_llm_service() -> LLMCategorizationService:
    """Get or create the LLM categorization service instance."""
    global _llm_service
    if _llm_service is None:
        _llm_service = LLMCategorizationService()
    return _llm_service
