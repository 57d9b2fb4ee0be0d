import asyncio
import json
import logging
from dataclasses import replace
from typing import Dict, List, Optional, Protocol

import google.generativeai as genai
from pydantic import AliasChoices, BaseModel, Field

from feedpush.errors import SemanticFilterError
from feedpush.http_client import HTTPClient
from feedpush.models import Article

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a technical article curator. Given a filtering requirement and a list of articles, select the articles that satisfy the requirement.

**Reply with ONLY a JSON object in exactly this shape, no other text:**

{
  "selected": [
    {"link": "the article's link, copied exactly", "reason": "why it was selected, 10-50 words"}
  ],
  "summary": "optional one-line summary of the selection"
}

Rules:
1. Every object in "selected" must carry a "link" identical to an input article's link
2. Only include articles that satisfy the requirement
3. If nothing qualifies, return an empty "selected" array
4. The reply must be valid JSON"""

KEYWORD_GUIDANCE = """

**User keyword configuration (guidance):**

```
{keywords}
```

Format:
- Plain lines: the article should mention one of these
- Lines starting with +: the article must mention this word
- Lines starting with !: exclude articles mentioning this word
- Blank lines separate alternative word groups; satisfying any group is enough"""


class Selection(BaseModel):
    link: str
    reason: Optional[str] = None


class FilterResponse(BaseModel):
    selected: List[Selection] = Field(validation_alias=AliasChoices("selected", "selectedArticles"))
    summary: Optional[str] = None


class ModelClient(Protocol):
    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        ...


def read_keyword_guidance(path: Optional[str]) -> str:
    """Raw keyword file text for the prompt. A missing file just means no guidance."""
    if not path:
        return ""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read().strip()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Could not read keyword file for AI guidance: {path} ({e})")
        return ""


def article_to_input(article: Article) -> Dict[str, Optional[str]]:
    return {
        "title": article.title,
        "summary": article.summary,
        "sourceName": article.source_name,
        "category": article.category,
        "link": article.link,
    }


def parse_filter_response(text: str) -> FilterResponse:
    """Validate the model's reply. Raises SemanticFilterError on any shape problem."""
    if not text or not text.strip():
        raise SemanticFilterError("model returned empty content")
    cleaned = text.strip().replace("```json", "").replace("```", "").strip()
    try:
        return FilterResponse.model_validate_json(cleaned)
    except ValueError as e:
        # pydantic.ValidationError subclasses ValueError
        raise SemanticFilterError(f"malformed filter response: {e}") from e


class GeminiClient:
    """google-generativeai backed client with a model fallback chain."""

    fallback_models = [
        "gemini-2.5-flash",
        "gemini-2.5-flash-lite",
        "gemini-2.0-flash",
        "gemini-2.0-flash-lite",
    ]

    def __init__(self, api_key: str, model: Optional[str] = None, max_tokens: int = 4000, temperature: float = 0.3):
        genai.configure(api_key=api_key)
        self.models = [model] if model else list(self.fallback_models)
        self.generation_config = {
            "response_mime_type": "application/json",
            "max_output_tokens": max_tokens,
            "temperature": temperature,
        }

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        last_error: Optional[Exception] = None
        for model_name in self.models:
            try:
                model = genai.GenerativeModel(
                    model_name,
                    system_instruction=system_prompt,
                    generation_config=self.generation_config,
                )
                response = await model.generate_content_async(user_prompt)
                return response.text
            except Exception as e:
                error_msg = str(e).lower()
                if "404" in error_msg or "not found" in error_msg or "429" in error_msg or "quota" in error_msg:
                    logger.warning(f"Model {model_name} unavailable ({str(e)[:100]}), trying next...")
                    last_error = e
                    continue
                raise SemanticFilterError(f"Gemini call failed on {model_name}: {e}") from e
        raise SemanticFilterError(f"All models exhausted: {last_error}")


class ChatCompletionsClient:
    """OpenAI-compatible chat completions endpoint (DeepSeek and friends)."""

    def __init__(
        self,
        http_client: HTTPClient,
        api_url: str,
        api_key: str,
        model: Optional[str] = None,
        max_tokens: int = 4000,
        temperature: float = 0.3,
        timeout: float = 60.0,
    ):
        self.http_client = http_client
        self.api_url = api_url
        self.api_key = api_key
        self.model = model or "deepseek-chat"
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
        }
        try:
            data = await self.http_client.post_json(
                self.api_url,
                payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except Exception as e:
            raise SemanticFilterError(f"chat completions call failed: {e}") from e

        try:
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise SemanticFilterError(f"unexpected chat completions payload: {e}") from e


class SemanticFilter:
    def __init__(
        self,
        client: Optional[ModelClient],
        requirement: str,
        keywords: str = "",
        enabled: bool = True,
        timeout: float = 60.0,
    ):
        self.client = client
        self.requirement = requirement
        self.keywords = keywords
        self.enabled = enabled and client is not None
        self.timeout = timeout

    def build_system_prompt(self) -> str:
        prompt = SYSTEM_PROMPT
        if self.keywords:
            prompt += KEYWORD_GUIDANCE.replace("{keywords}", self.keywords)
        return prompt

    def build_user_prompt(self, articles: List[Article]) -> str:
        articles_json = json.dumps([article_to_input(a) for a in articles], ensure_ascii=False, indent=2)
        return (
            f"**Requirement:**\n{self.requirement}\n\n"
            f"**Articles:**\n{articles_json}\n\n"
            "Select the articles that meet the requirement and reply in the JSON format above."
        )

    async def filter(self, articles: List[Article]) -> List[Article]:
        """
        Keep only the articles the model selects, with its reason attached.
        Any failure returns the input unchanged.
        """
        if not self.enabled or not articles:
            return articles

        logger.info(f"🤖 AI filtering {len(articles)} article(s)...")
        try:
            text = await asyncio.wait_for(
                self.client.complete(self.build_system_prompt(), self.build_user_prompt(articles)),
                timeout=self.timeout,
            )
            result = parse_filter_response(text)
        except asyncio.TimeoutError:
            logger.error(f"AI filtering timed out after {self.timeout}s. Keeping all articles.")
            return articles
        except Exception as e:
            logger.error(f"AI filtering failed: {str(e)[:200]}. Keeping all articles.")
            return articles

        reasons = {item.link: item.reason for item in result.selected}
        selected = [replace(a, reason=reasons[a.link]) for a in articles if a.link in reasons]

        logger.info(f"✅ AI selected {len(selected)}/{len(articles)} article(s)")
        if result.summary:
            logger.info(f"📝 Selection summary: {result.summary}")
        for article in selected:
            if article.reason:
                logger.debug(f"   - {article.title}: {article.reason}")
        return selected
