"""OpenAI API connectors for recipe text and recipe image generation."""

import json
from typing import Any

import httpx
from pydantic import ValidationError
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from recipegen.config import get_settings
from recipegen.generate.connectors.base import (
    ConnectorError,
    ConnectorResponse,
    GenerationError,
    ImageGenerationClient,
    RateLimitError,
    TextGenerationClient,
)
from recipegen.logging_config import get_logger
from recipegen.schemas import GeneratedRecipe, RecipeConcept

logger = get_logger(__name__)

RECIPE_SYSTEM_PROMPT = """You are a professional nutritionist and recipe developer.
Create one complete recipe that matches the requested concept as closely as possible,
especially the target nutrition per serving.

Respond with a single JSON object with exactly these keys:
  name, description, mealTypes, dietaryTags, mainIngredientTags,
  ingredients (list of {name, amount, unit}), instructions (string),
  prepTimeMinutes, cookTimeMinutes, servings,
  estimatedNutrition ({calories, protein, carbs, fat} per serving, numbers only).
"""


def build_recipe_prompt(concept: RecipeConcept) -> str:
    """Build the user prompt describing one recipe concept."""
    target = concept.target_nutrition
    lines = [
        f"Recipe concept: {concept.name}",
        f"Description: {concept.description or 'n/a'}",
        f"Meal types: {', '.join(concept.meal_types) or 'any'}",
        f"Dietary tags: {', '.join(concept.dietary_tags) or 'none'}",
        f"Main ingredients: {', '.join(concept.main_ingredient_tags) or 'any'}",
        f"Difficulty: {concept.estimated_difficulty}",
        (
            f"Target nutrition per serving: {target.calories:g} kcal, "
            f"{target.protein_grams:g} g protein, {target.carbs_grams:g} g carbs, "
            f"{target.fat_grams:g} g fat"
        ),
    ]
    return "\n".join(lines)


class OpenAIConnector:
    """Shared HTTP plumbing for the OpenAI REST API."""

    DEFAULT_TIMEOUT = 90.0
    MAX_RETRIES = 3
    BACKOFF_BASE = 1
    BACKOFF_MAX = 30

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
    ):
        settings = get_settings()
        self.api_key = api_key or settings.openai_api_key
        self.base_url = (base_url or settings.openai_base_url).rstrip("/")
        self.timeout = timeout or settings.openai_timeout or self.DEFAULT_TIMEOUT
        self.max_retries = max_retries or settings.openai_max_retries or self.MAX_RETRIES
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                    "User-Agent": "Recipegen/1.0",
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(self, endpoint: str, payload: dict[str, Any]) -> ConnectorResponse:
        """POST a JSON payload with retry logic for transient network errors."""
        url = f"{self.base_url}/{endpoint}"
        client = await self._get_client()

        @retry(
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.BACKOFF_BASE, max=self.BACKOFF_MAX),
            reraise=True,
        )
        async def _do_request() -> httpx.Response:
            return await client.post(url, json=payload)

        try:
            response = await _do_request()
        except (RetryError, httpx.TimeoutException, httpx.NetworkError) as e:
            logger.error(f"Request failed after {self.max_retries} attempts: {url}")
            raise ConnectorError(
                f"Request failed after {self.max_retries} attempts",
                response=str(e),
            ) from e

        result = ConnectorResponse(
            data=None,
            status_code=response.status_code,
            headers=dict(response.headers),
        )

        if result.is_rate_limited:
            raise RateLimitError(f"Rate limited by {url}", retry_after=result.retry_after)

        if response.status_code >= 400:
            error_detail = response.text[:500] if response.text else "No details"
            logger.error(f"API error {response.status_code} for {url}: {error_detail}")
            raise ConnectorError(
                f"API request failed with status {response.status_code}",
                status_code=response.status_code,
                response=error_detail,
            )

        try:
            result.data = response.json() if response.text else {}
        except ValueError as e:
            raise ConnectorError(f"Invalid JSON in response from {url}: {e}") from e

        return result

    async def __aenter__(self):
        await self._get_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


class OpenAITextConnector(OpenAIConnector, TextGenerationClient):
    """Generates recipe content with the chat completions endpoint."""

    def __init__(self, model: str | None = None, temperature: float = 0.7, **kwargs: Any):
        super().__init__(**kwargs)
        self.model = model or get_settings().openai_text_model
        self.temperature = temperature

    async def generate(self, concept: RecipeConcept) -> GeneratedRecipe:
        """Generate a full recipe for one concept."""
        payload = {
            "model": self.model,
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": RECIPE_SYSTEM_PROMPT},
                {"role": "user", "content": build_recipe_prompt(concept)},
            ],
        }

        response = await self._request("chat/completions", payload)
        return parse_recipe_completion(response.data)


def parse_recipe_completion(data: dict[str, Any]) -> GeneratedRecipe:
    """
    Parse a chat completion response into a GeneratedRecipe.

    Args:
        data: Decoded JSON body of a chat completion response.

    Returns:
        The parsed recipe.

    Raises:
        GenerationError: If the response has no content or the content is not
            a valid recipe object.
    """
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as e:
        raise GenerationError("Completion response has no message content") from e

    if not content:
        raise GenerationError("Completion response content is empty")

    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as e:
        raise GenerationError(f"Recipe content is not valid JSON: {e}") from e

    # Some models wrap the object, e.g. {"recipe": {...}}
    if isinstance(parsed, dict) and len(parsed) == 1:
        (only_value,) = parsed.values()
        if isinstance(only_value, dict):
            parsed = only_value

    # Recipe ids are assigned locally, never taken from model output
    if isinstance(parsed, dict):
        parsed.pop("recipeId", None)
        parsed.pop("recipe_id", None)

    try:
        return GeneratedRecipe.model_validate(parsed)
    except ValidationError as e:
        raise GenerationError(f"Recipe content failed validation: {e}") from e


class OpenAIImageConnector(OpenAIConnector, ImageGenerationClient):
    """Generates recipe images with the images endpoint."""

    SIZE = "1024x1024"
    QUALITY = "hd"

    def __init__(self, model: str | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.model = model or get_settings().openai_image_model

    async def generate(self, prompt: str) -> str:
        """Generate one image and return its temporary URL."""
        payload = {
            "model": self.model,
            "prompt": prompt,
            "n": 1,
            "size": self.SIZE,
            "quality": self.QUALITY,
        }

        response = await self._request("images/generations", payload)

        images = (response.data or {}).get("data") or []
        if not images or not images[0].get("url"):
            raise GenerationError("Image generation returned no image URL")
        return images[0]["url"]
