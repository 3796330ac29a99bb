from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import Any, Dict, Iterable, Optional

try:  # pragma: no cover - dependency is optional for tests
    import google.generativeai as genai  # type: ignore
except ImportError:  # pragma: no cover
    genai = None  # type: ignore

from ..models import CATEGORY_SLUGS, CategorySlug

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"


def _load_prompt(name: str) -> Template:
    path = PROMPTS_DIR / name
    try:
        return Template(path.read_text(encoding="utf-8"))
    except OSError as exc:  # pragma: no cover - fail fast when prompt file missing
        raise RuntimeError(f"Failed to load prompt from {path}") from exc


EDITORIAL_PROMPT = _load_prompt("editorial_article.md")
CAPTION_PROMPT = _load_prompt("instagram_caption.md")
CLASSIFICATION_PROMPT = _load_prompt("category_classification.md")

GEMINI_MODEL_ID = os.getenv("GEMINI_MODEL_ID", "gemini-2.5-flash")
SITE_NAME = os.getenv("SITE_NAME", "NewsTodayForYou")
BASE_HASHTAG = "#NewsTodayForYou"
CATEGORY_HASHTAGS = {
    CategorySlug.SPORTS: "#Sports",
    CategorySlug.POLITICS: "#Politics",
    CategorySlug.AI_NEWS: "#AINews",
    CategorySlug.CELEBRITY: "#Celebrity",
    CategorySlug.GAMES: "#Games",
    CategorySlug.DAILY_HIGHLIGHTS: "#DailyHighlights",
}

EDITOR_SYSTEM_PROMPT = (
    "You are a professional news editor who rewrites articles in clear, engaging English with "
    "unique editorial structure. Always return valid JSON only. Never copy sentences verbatim "
    "from sources. Always paraphrase and restructure."
)
CAPTION_SYSTEM_PROMPT = (
    "You are a professional Instagram content creator. Return ONLY the caption text, "
    "without JSON, markdown or explanations."
)
CLASSIFIER_SYSTEM_PROMPT = "You are a news classification assistant. Return only the category slug."

CODE_FENCE_PATTERN = re.compile(r"```(?:json|\w+)?|```", re.IGNORECASE)
JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")
TRAILING_HASHTAGS_PATTERN = re.compile(r"((?:#[^\s#]+\s*)+)$")
MARKDOWN_HEADING_PATTERN = re.compile(r"^#+\s+", re.MULTILINE)
SLUG_STRIP_PATTERN = re.compile(r"[^a-z0-9\s-]")

EXCERPT_MAX_LENGTH = 160


class ArticleAiError(Exception):
    """Base class for language model failures."""


class ArticleAiClientUnavailable(ArticleAiError):
    """Raised when the Gemini SDK is not available."""


class ArticleAiApiKeyMissing(ArticleAiError):
    """Raised when no API key is configured."""


class ArticleAiResponseError(ArticleAiError):
    """Raised when the model answer cannot be used."""


@dataclass
class AiArticleSource:
    title: str
    body: str
    source_name: str
    excerpt: Optional[str] = None
    category_slug: Optional[str] = None
    published_at: Optional[str] = None
    url: Optional[str] = None
    image_url: Optional[str] = None


@dataclass
class EditorialArticle:
    title: str
    slug: str
    body: str
    excerpt: str
    source_name: str


def resolve_api_key(settings=None) -> str:
    stored = (getattr(settings, "gemini_api_key", "") or "").strip() if settings is not None else ""
    return stored or os.getenv("GEMINI_API_KEY", "").strip()


def generate_slug(title: str) -> str:
    slug = SLUG_STRIP_PATTERN.sub("", (title or "").lower())
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug[:100]


def build_hashtags(category: Optional[str]) -> str:
    hashtags = [BASE_HASHTAG]
    tag = CATEGORY_HASHTAGS.get((category or "").lower())
    if tag:
        hashtags.append(tag)
    return " ".join(hashtags)


def _ensure_model(api_key: str, system_instruction: str):
    if not genai:  # pragma: no cover - dependency check
        raise ArticleAiClientUnavailable("google-generativeai package is not installed")
    if not api_key:
        raise ArticleAiApiKeyMissing("Gemini API key is not configured")
    genai.configure(api_key=api_key)
    return genai.GenerativeModel(GEMINI_MODEL_ID, system_instruction=system_instruction)


def _response_text(response: Any) -> Optional[str]:
    text = getattr(response, "text", None)
    if text:
        return text
    # Some responses require iterating candidates when .text is empty
    for candidate in getattr(response, "candidates", []) or []:
        if candidate and getattr(candidate, "content", None):
            parts = getattr(candidate.content, "parts", None)
            if not parts:
                continue
            joined = "\n".join(str(getattr(part, "text", "")) for part in parts if getattr(part, "text", ""))
            if joined.strip():
                return joined
    return None


def _generate_text(
    api_key: str,
    system_instruction: str,
    prompt: str,
    temperature: float,
    max_output_tokens: int,
) -> str:
    model = _ensure_model(api_key, system_instruction)
    try:
        response = model.generate_content(
            prompt,
            generation_config={"temperature": temperature, "max_output_tokens": max_output_tokens},
        )
    except Exception as exc:  # pragma: no cover - network/API failures
        raise ArticleAiError(f"Gemini API error: {exc}") from exc

    text = _response_text(response)
    if not text:
        raise ArticleAiResponseError("Gemini response did not include text output")
    return text


def _clean_response_text(raw_text: str) -> str:
    return CODE_FENCE_PATTERN.sub("", raw_text or "").strip()


def _parse_json_from_text(raw_text: str) -> Dict[str, Any]:
    cleaned = _clean_response_text(raw_text)
    if not cleaned:
        raise ArticleAiResponseError("Gemini response did not include any JSON content")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        match = JSON_OBJECT_PATTERN.search(cleaned)
        if match:
            try:
                return json.loads(match.group(0))
            except json.JSONDecodeError:
                pass
        raise ArticleAiResponseError("Failed to parse Gemini response as JSON")


def _first_sentence(content: str) -> str:
    plain = MARKDOWN_HEADING_PATTERN.sub("", content or "")
    return re.split(r"[.!?]", plain, maxsplit=1)[0].strip()[:150]


def generate_editorial_article(source: AiArticleSource, api_key: str) -> EditorialArticle:
    """Rewrite a source article into the site's editorial format."""
    prompt = EDITORIAL_PROMPT.safe_substitute(
        title=source.title,
        body=(source.body or "")[:3000],
        excerpt_line=f"Original Excerpt: {source.excerpt}" if source.excerpt else "",
        source_name=source.source_name,
        category_line=f"Category: {source.category_slug}" if source.category_slug else "",
    )
    text = _generate_text(api_key, EDITOR_SYSTEM_PROMPT, prompt, temperature=0.7, max_output_tokens=2500)
    result = _parse_json_from_text(text)
    if not isinstance(result, dict):
        raise ArticleAiResponseError("Gemini response JSON was not an object")

    title = str(result.get("new_title") or "").strip()
    content = str(result.get("new_content") or "").strip()
    if not title or not content:
        raise ArticleAiResponseError("Incomplete AI response")

    slug = generate_slug(str(result.get("new_slug") or "").strip()) or generate_slug(title)
    if not slug:
        raise ArticleAiResponseError("AI response produced an empty slug")

    excerpt = str(result.get("new_excerpt") or "").strip()
    if not excerpt:
        excerpt = _first_sentence(content) or f"Latest news update from {SITE_NAME}."

    return EditorialArticle(
        title=title,
        slug=slug,
        body=content,
        excerpt=excerpt[:EXCERPT_MAX_LENGTH],
        source_name=str(result.get("source_name") or "").strip() or source.source_name,
    )


def generate_fallback_article(source: AiArticleSource) -> EditorialArticle:
    """Plain restructuring of the source used when the model is unavailable."""
    body_text = source.body or ""
    excerpt = source.excerpt or body_text[:150].replace("\n", " ") + "..."
    body = f"{source.title}\n\n{body_text[:1000]}...\n\n**Source:** {source.source_name}"
    return EditorialArticle(
        title=source.title,
        slug=generate_slug(source.title),
        body=body,
        excerpt=excerpt[:EXCERPT_MAX_LENGTH],
        source_name=source.source_name,
    )


def normalize_caption(raw_text: str, hashtags: str) -> str:
    caption = _clean_response_text(raw_text)
    if "#" not in caption:
        return f"{caption}\n\n{hashtags}".strip()
    match = TRAILING_HASHTAGS_PATTERN.search(caption)
    if match:
        before = caption[: match.start()].rstrip()
        tags = " ".join(match.group(1).split())
        if before:
            return f"{before}\n\n{tags}"
        return tags
    return caption.strip()


def fallback_caption(title: str, summary: str, hashtags: str) -> str:
    return f"{title}\n\n{summary}\n\n{hashtags}"


def generate_instagram_caption(
    title: str,
    body: str,
    excerpt: Optional[str],
    category: Optional[str],
    api_key: str,
) -> str:
    """Caption text for the social queue; the article URL is appended at publish time."""
    hashtags = build_hashtags(category)
    prompt = CAPTION_PROMPT.safe_substitute(
        title=title,
        summary=excerpt or (body or "")[:500],
        category=category or "general",
        hashtags=hashtags,
    )
    try:
        text = _generate_text(api_key, CAPTION_SYSTEM_PROMPT, prompt, temperature=0.7, max_output_tokens=400)
    except ArticleAiError as exc:
        logger.warning("Caption generation failed for %r, using fallback: %s", title[:60], exc)
        summary = excerpt or (body or "")[:150] + "..."
        return fallback_caption(title, summary, hashtags)
    return normalize_caption(text, hashtags)


def classify_category(
    title: Optional[str],
    source_name: Optional[str],
    body: Optional[str],
    api_key: str,
    allowed: Iterable[str] = CATEGORY_SLUGS,
) -> str:
    """Ask the model for one category slug; unknown answers map to daily-highlights."""
    allowed_slugs = list(allowed)
    prompt = CLASSIFICATION_PROMPT.safe_substitute(
        categories="\n".join(f"- {slug}" for slug in allowed_slugs),
        title=title or "Untitled",
        source_name=source_name or "Unknown Source",
        body=(body or "")[:400],
    )
    text = _generate_text(api_key, CLASSIFIER_SYSTEM_PROMPT, prompt, temperature=0.3, max_output_tokens=20)
    answer = _clean_response_text(text).strip().strip("\"'.").lower()
    if answer in allowed_slugs:
        return answer
    logger.warning("Model returned unknown category %r, defaulting to %s", answer, CategorySlug.DAILY_HIGHLIGHTS)
    return CategorySlug.DAILY_HIGHLIGHTS
