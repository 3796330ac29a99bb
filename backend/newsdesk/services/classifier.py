from __future__ import annotations

import logging
import re
from typing import Any, Iterable, List, Optional, Pattern, Sequence, Tuple

from ..models import CATEGORY_SLUGS, CategorySlug
from .article_ai import ArticleAiError, classify_category

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = CategorySlug.DAILY_HIGHLIGHTS


def _compile(needles: Iterable[str]) -> Pattern[str]:
    # Whole words only, plurals allowed: "ai" must not match "airline", "win" must not match "window".
    alternatives = sorted((re.escape(needle) for needle in needles), key=len, reverse=True)
    return re.compile(r"(?<![a-z0-9])(?:" + "|".join(alternatives) + r")(?:s|es)?(?![a-z0-9])", re.IGNORECASE)


class CategoryClassifier:
    def __init__(self) -> None:
        self.category_rules: List[Tuple[str, Pattern[str]]] = [
            (CategorySlug.CELEBRITY, _compile(["dmoz/society/people/celebrity", "celebrity"])),
            (
                CategorySlug.POLITICS,
                _compile([
                    "dmoz/society/politics",
                    "politic",
                    "political",
                    "politician",
                    "election",
                    "parliament",
                    "government",
                    "senate",
                    "president",
                    "prime minister",
                ]),
            ),
            (
                CategorySlug.AI_NEWS,
                _compile([
                    "dmoz/computers/artificial_intelligence",
                    "artificial intelligence",
                    "ai",
                    "machine learning",
                    "chatgpt",
                    "openai",
                    "neural network",
                ]),
            ),
            (
                CategorySlug.SPORTS,
                _compile([
                    "dmoz/sports",
                    "sport",
                    "football",
                    "soccer",
                    "basketball",
                    "tennis",
                    "cricket",
                    "match",
                    "tournament",
                    "league",
                    "world cup",
                ]),
            ),
            (
                CategorySlug.GAMES,
                _compile(["dmoz/games", "video game", "playstation", "xbox", "nintendo", "esports", "steam"]),
            ),
        ]
        self.keyword_rules: List[Tuple[str, Pattern[str]]] = [
            (
                CategorySlug.SPORTS,
                _compile([
                    "sport", "football", "soccer", "basketball", "tennis", "cricket", "match",
                    "tournament", "league", "cup", "world cup", "goal", "score", "win", "loss",
                    "victory", "defeat", "coach", "team", "nba", "nfl", "nhl", "premier league",
                    "uefa", "fifa", "olympic",
                ]),
            ),
            (
                CategorySlug.POLITICS,
                _compile([
                    "president", "prime minister", "election", "campaign", "parliament", "senate",
                    "congress", "government", "policy", "law", "lawmaker", "vote", "white house",
                ]),
            ),
            (
                CategorySlug.AI_NEWS,
                _compile([
                    "artificial intelligence", "ai-powered", "machine learning", "neural network",
                    "chatgpt", "gpt", "large language model", "llm", "openai", "deepmind", "algorithm",
                ]),
            ),
            (
                CategorySlug.CELEBRITY,
                _compile([
                    "actor", "actress", "singer", "rapper", "hollywood", "bollywood", "pop star",
                    "movie star", "tv star", "celebrity", "influencer",
                ]),
            ),
            (
                CategorySlug.GAMES,
                _compile([
                    "video game", "playstation", "xbox", "nintendo", "esports", "pc game", "steam",
                    "battle royale", "fortnite", "minecraft", "call of duty", "valorant",
                ]),
            ),
        ]

    @staticmethod
    def collect_category_strings(article: Any) -> List[str]:
        """Flatten Event Registry category URIs and labels into lower-case strings."""
        out: List[str] = []
        if not isinstance(article, dict):
            return out

        def pull(values: Any) -> None:
            if isinstance(values, str):
                out.append(values)
                return
            if not isinstance(values, list):
                return
            for item in values:
                if isinstance(item, str):
                    out.append(item)
                elif isinstance(item, dict):
                    for key in ("uri", "label", "name"):
                        if isinstance(item.get(key), str):
                            out.append(item[key])

        pull(article.get("categoryUri"))
        pull(article.get("categories"))
        data = article.get("data")
        if isinstance(data, dict):
            pull(data.get("categories"))
        return [value.lower() for value in out]

    @staticmethod
    def _first_match(rules: Sequence[Tuple[str, Pattern[str]]], text: str) -> Optional[str]:
        for slug, pattern in rules:
            if pattern.search(text):
                return slug
        return None

    def classify_text(self, *parts: Optional[str]) -> Optional[str]:
        text = " ".join(part for part in parts if part).lower()
        if not text.strip():
            return None
        return self._first_match(self.keyword_rules, text)

    def get_final_category_slug(
        self,
        article: Any,
        title: Optional[str],
        body: Optional[str],
        source_name: Optional[str],
    ) -> str:
        """Category URIs first, then keywords on the rewritten text, else the default."""
        haystack = " | ".join(self.collect_category_strings(article))
        if haystack:
            slug = self._first_match(self.category_rules, haystack)
            if slug:
                return slug
        return self.classify_text(title, body, source_name) or DEFAULT_CATEGORY

    def categorize_post(
        self,
        title: Optional[str],
        excerpt: Optional[str] = None,
        body: Optional[str] = None,
        source_name: Optional[str] = None,
    ) -> str:
        # Headline and excerpt carry the strongest signal; the body is only consulted if they say nothing.
        slug = self.classify_text(title, excerpt, source_name)
        if slug:
            return slug
        return self.classify_text((body or "")[:2000]) or DEFAULT_CATEGORY

    def get_final_category_slug_for_post(
        self,
        title: Optional[str],
        excerpt: Optional[str] = None,
        body: Optional[str] = None,
        source_name: Optional[str] = None,
        api_key: str = "",
        use_ai: bool = False,
    ) -> str:
        if use_ai and api_key:
            try:
                slug = classify_category(title, source_name, body or excerpt, api_key)
            except ArticleAiError as exc:
                logger.warning("AI classification failed for %r, using keywords: %s", (title or "")[:60], exc)
            else:
                if slug in CATEGORY_SLUGS:
                    return slug
        return self.categorize_post(title, excerpt, body, source_name)


category_classifier = CategoryClassifier()
