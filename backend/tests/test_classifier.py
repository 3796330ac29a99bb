from unittest import mock

import pytest

from newsdesk.services.article_ai import ArticleAiResponseError
from newsdesk.services.classifier import DEFAULT_CATEGORY, CategoryClassifier


@pytest.fixture
def classifier():
    return CategoryClassifier()


def test_collect_category_strings_flattens_uris_and_labels(classifier):
    article = {
        "categoryUri": "dmoz/Sports",
        "categories": ["news/Politics", {"uri": "dmoz/Games/Video_Games", "label": "Video Games"}],
        "data": {"categories": [{"name": "Celebrity"}]},
    }
    assert classifier.collect_category_strings(article) == [
        "dmoz/sports",
        "news/politics",
        "dmoz/games/video_games",
        "video games",
        "celebrity",
    ]


def test_collect_category_strings_ignores_non_dicts(classifier):
    assert classifier.collect_category_strings(None) == []
    assert classifier.collect_category_strings("dmoz/Sports") == []


def test_category_uri_wins_over_keywords(classifier):
    article = {"categories": [{"uri": "dmoz/Sports/Soccer"}]}
    assert classifier.get_final_category_slug(article, "Senate debates budget", "", "Wire") == "sports"


def test_category_rule_order_prefers_celebrity(classifier):
    article = {"categories": [{"uri": "dmoz/Society/Politics"}, {"uri": "dmoz/Society/People/Celebrity"}]}
    assert classifier.get_final_category_slug(article, "", "", "") == "celebrity"


def test_short_needles_do_not_match_inside_words(classifier):
    article = {"categories": [{"uri": "dmoz/Business/Airlines"}]}
    assert classifier.get_final_category_slug(article, "Flights delayed", "Travellers waited.", "Wire") == DEFAULT_CATEGORY
    assert classifier.classify_text("New window designs unveiled") is None


def test_ai_uri_matches_as_whole_segment(classifier):
    article = {"categories": [{"uri": "dmoz/Computers/Artificial_Intelligence"}]}
    assert classifier.get_final_category_slug(article, "", "", "") == "ai-news"


@pytest.mark.parametrize(
    "title, expected",
    [
        ("Lakers beat Celtics in NBA thriller", "sports"),
        ("Senate passes sweeping new law", "politics"),
        ("OpenAI unveils a faster model", "ai-news"),
        ("Hollywood actress joins new film", "celebrity"),
        ("Nintendo reveals next Zelda", "games"),
    ],
)
def test_keyword_fallback(classifier, title, expected):
    assert classifier.get_final_category_slug({}, title, "", "") == expected


def test_keywords_allow_plurals(classifier):
    assert classifier.classify_text("Lawmakers clash over budget") == "politics"
    assert classifier.classify_text("Two teams reach the final") == "sports"


def test_no_signal_defaults_to_daily_highlights(classifier):
    assert classifier.get_final_category_slug({}, "Weather turns mild", "Sunny skies ahead.", "") == DEFAULT_CATEGORY


def test_categorize_post_prefers_headline_over_body(classifier):
    assert classifier.categorize_post("Election results are in", None, "The football club reacted.") == "politics"
    assert classifier.categorize_post("Quiet day in town", None, "The football club reacted.") == "sports"


def test_ai_classification_used_when_enabled(classifier):
    with mock.patch("newsdesk.services.classifier.classify_category", return_value="games") as classify:
        slug = classifier.get_final_category_slug_for_post("Election day", None, "", "Wire", api_key="k", use_ai=True)
    assert slug == "games"
    classify.assert_called_once()


def test_ai_failure_falls_back_to_keywords(classifier):
    with mock.patch(
        "newsdesk.services.classifier.classify_category",
        side_effect=ArticleAiResponseError("boom"),
    ):
        slug = classifier.get_final_category_slug_for_post("Election day", None, "", "Wire", api_key="k", use_ai=True)
    assert slug == "politics"


def test_ai_skipped_without_key(classifier):
    with mock.patch("newsdesk.services.classifier.classify_category") as classify:
        slug = classifier.get_final_category_slug_for_post("Election day", use_ai=True)
    classify.assert_not_called()
    assert slug == "politics"
