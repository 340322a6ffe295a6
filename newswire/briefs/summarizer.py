"""LLM-backed digest summarization."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

import openai

from newswire.contracts.daily_digest import render_digest_markdown, validate_daily_digest
from newswire.ingestion.article_types import ArticleView
from newswire.utils.retry import call_with_retry


logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a news editor writing a concise daily digest for a chat channel.

You receive a JSON array of articles, each with title, snippet, content and source_link.
Group related coverage, pick the most important stories, and return ONE JSON object:

{
  "digest_title": "short title for this edition",
  "overview": "2-4 sentence overview of the period",
  "main_stories": [
    {"headline": "...", "category": "Politics | Business | World | Tech | ... (optional)",
     "summary": "3-5 sentences grounded in the articles", "source_link": "link of the main article"}
  ],
  "other_topics": [
    {"topic": "...", "brief_update": "1-2 sentences", "source_link": "..."}
  ]
}

Rules:
- Use only facts present in the articles; never invent numbers, names or links.
- source_link must be copied verbatim from the input.
- Write in the language the majority of the articles are written in.

OUTPUT ONLY VALID JSON - NO OTHER TEXT."""


class Summarizer:
    def summarize(self, articles: Sequence[ArticleView]) -> Optional[str]:
        """Return digest text, or None when nothing usable could be produced."""
        raise NotImplementedError


def strip_code_fences(text: str) -> str:
    clean = (text or "").strip()
    if clean.startswith("```json"):
        clean = clean[7:]
    if clean.startswith("```"):
        clean = clean[3:]
    if clean.endswith("```"):
        clean = clean[:-3]
    return clean.strip()


def articles_payload(articles: Sequence[ArticleView]) -> List[Dict[str, str]]:
    return [
        {"title": a.title, "snippet": a.snippet, "content": a.content, "source_link": a.link}
        for a in articles
    ]


class OpenAISummarizer(Summarizer):
    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: Optional[str] = None,
        temperature: float = 0.3,
        timeout: float = 120.0,
        max_retries: int = 2,
        client: Any = None,
    ):
        self.model = model
        self.temperature = temperature
        self.max_retries = max_retries
        self.client = client or openai.OpenAI(api_key=api_key, base_url=base_url, timeout=timeout)

    def _complete(self, user_content: str) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_content},
            ],
            temperature=self.temperature,
            response_format={"type": "json_object"},
        )
        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.info(
                f"LLM usage - Prompt: {usage.prompt_tokens}, "
                f"Completion: {usage.completion_tokens}, Total: {usage.total_tokens} tokens"
            )
        return response.choices[0].message.content or ""

    def summarize(self, articles: Sequence[ArticleView]) -> Optional[str]:
        if not articles:
            return None
        user_content = json.dumps(articles_payload(articles), ensure_ascii=False)
        logger.info(f"Summarizing {len(articles)} articles with {self.model} ({len(user_content)} chars)")

        start_time = time.time()
        try:
            result_text = call_with_retry(self._complete, user_content, max_retries=self.max_retries, base_delay=2.0)
        except openai.OpenAIError as e:
            logger.error(f"Digest summarization request failed: {e}")
            return None

        try:
            payload = json.loads(strip_code_fences(result_text))
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse digest JSON response: {e}")
            logger.error(f"Raw response text: {result_text[:1000]}...")
            return None
        if not isinstance(payload, dict):
            logger.error("Digest response was not a JSON object")
            return None

        errors = validate_daily_digest(payload)
        if errors:
            logger.error(f"Digest response failed validation: {'; '.join(errors[:5])}")
            return None

        logger.info(f"Generated digest in {time.time() - start_time:.1f}s")
        return render_digest_markdown(payload)
