"""HTTP client for the external analysis provider."""

import hashlib
import json
import logging
from typing import Any, Dict

import httpx

from brandscan.config import settings
from brandscan.models.records import Brand

logger = logging.getLogger(__name__)

# Allowed models and pipeline stages
ALLOWED_MODELS = ["ChatGPT", "Claude", "Gemini"]
ALLOWED_STAGES = ["TOFU", "MOFU", "BOFU", "EVFU"]


class ProviderError(Exception):
    """Provider call failed (transport error, timeout or non-2xx response)."""


class AnalysisProviderClient:
    """Client for the analysis provider.

    A call is attempted once. Transient failures surface as ProviderError and
    are retried by the next dispatch of the pair, never in-line, so that one
    invocation stays inside its execution time budget.
    """

    def __init__(self, base_url: str = None, api_key: str = None, timeout: float = None):
        """Initialize the provider client."""
        self.base_url = (base_url or settings.PROVIDER_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.PROVIDER_API_KEY
        self.timeout = timeout or settings.PROVIDER_TIMEOUT

    def _hash_text(self, text: str) -> str:
        """Hash text using SHA256."""
        return hashlib.sha256(text.encode()).hexdigest()

    def _build_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _brand_payload(self, brand: Brand) -> Dict[str, Any]:
        return {
            "brand_id": brand.brand_id,
            "name": brand.name,
            "category": brand.category,
            "region": brand.region,
            "use_case": brand.use_case,
            "competitors": brand.competitors,
        }

    def analyze(self, brand: Brand, model: str, stage: str) -> Dict[str, Any]:
        """
        Run the multi-prompt visibility analysis for one model/stage pair.

        Args:
            brand: Brand record to analyze
            model: Model identifier from ALLOWED_MODELS
            stage: Funnel stage from ALLOWED_STAGES

        Returns:
            Raw provider result dict (sanitized later by the task runner)

        Raises:
            ValueError: If model or stage is not allowed
            ProviderError: On transport errors, timeouts or error responses
        """
        if model not in ALLOWED_MODELS:
            raise ValueError(f"Model {model} not in allowed list")
        if stage not in ALLOWED_STAGES:
            raise ValueError(f"Stage {stage} not in allowed list")

        payload = {"brand": self._brand_payload(brand), "model": model, "stage": stage}
        request_hash = self._hash_text(json.dumps(payload, sort_keys=True))
        logger.info(f"Provider request {model}-{stage} for brand {brand.brand_id}, hash: {request_hash[:16]}")

        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(
                    f"{self.base_url}/analyze",
                    headers=self._build_headers(),
                    json=payload,
                )
                response.raise_for_status()
                result = response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"Provider returned {e.response.status_code} for {model}-{stage}"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Provider request failed for {model}-{stage}: {e}") from e
        except ValueError as e:
            raise ProviderError(f"Provider returned invalid JSON for {model}-{stage}") from e

        logger.info(f"Provider response hash: {self._hash_text(json.dumps(result, sort_keys=True, default=str))[:16]}")
        return result
