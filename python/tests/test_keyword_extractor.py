"""Tests for heuristic keyword extraction."""

import pytest

from linkranger.services.keyword_extractor import (
    MAX_TERM_CHARS,
    extract_key_terms,
    extract_protected_compounds,
    extract_remaining_nouns,
    generate_abbreviations,
    generate_compound_keywords,
)


class TestExtractKeyTerms:
    def test_empty_title(self):
        assert extract_key_terms("") == []
        assert extract_key_terms("", None) == []

    def test_latin_words_next_to_japanese(self):
        terms = extract_key_terms("GitHub Copilotの使い方")

        assert "GitHub" in terms
        assert "Copilot" in terms
        assert "GitHub Copilot" in terms

    def test_multi_word_phrase_acronym(self):
        terms = extract_key_terms("Amazon Web Services入門")

        assert "Amazon Web Services" in terms
        assert "AWS" in terms

    def test_technical_term_kept_whole(self):
        terms = extract_key_terms("デザインシステムの作り方")

        assert "デザインシステム" in terms

    def test_question_subject(self):
        assert "ChatGPT" in extract_key_terms("ChatGPTとは")

    def test_study_method_abbreviation(self):
        terms = extract_key_terms("英語の勉強方法")

        assert "英語の勉強方法" in terms
        assert "英語の勉強法" in terms

    def test_latin_phrase_with_japanese_suffix(self):
        assert "Python勉強法" in extract_key_terms("Python 勉強方法まとめ")

    def test_bracket_contents(self):
        terms = extract_key_terms("今日から始める「Next.js」", "（App Router）対応")

        assert "Next.js" in terms
        assert "App Router" in terms

    def test_hashtags_from_description(self):
        terms = extract_key_terms("今日のメモ", "#SwiftUI #iOS")

        assert "SwiftUI" in terms
        assert "iOS" in terms

    def test_long_hashtag_dropped(self):
        long_tag = "a" * 25

        assert long_tag not in extract_key_terms("メモ", f"#{long_tag}")

    def test_year_tokens(self):
        terms = extract_key_terms("2024年のトレンド")

        assert "2024年" in terms

    def test_terms_are_unique(self):
        terms = extract_key_terms("React React React", "React")

        assert terms.count("React") == 1

    @pytest.mark.parametrize(
        "title,description",
        [
            ("株式会社サイバーエージェントのAI活用事例とプロジェクトマネジメント手法", None),
            ("A" * 80, "B" * 80),
            ("「" + "あ" * 60 + "」", "#" + "x" * 19),
        ],
    )
    def test_terms_are_bounded(self, title, description):
        for term in extract_key_terms(title, description):
            assert 1 <= len(term) <= MAX_TERM_CHARS


class TestProtectedCompounds:
    def test_katakana_run(self):
        assert "サイバーエージェント" in extract_protected_compounds("株式会社サイバーエージェント")

    def test_university_suffix(self):
        assert "東京大学" in extract_protected_compounds("東京大学の研究")

    def test_brand_mixed_script(self):
        assert "ポケモンGO" in extract_protected_compounds("ポケモンGOの攻略")


class TestRemainingNouns:
    def test_nouns_bounded_by_punctuation(self):
        assert extract_remaining_nouns("東京、大阪") == ["東京", "大阪"]

    def test_stop_nouns_removed(self):
        assert extract_remaining_nouns("これ、東京") == ["東京"]

    def test_masked_segments_skipped(self):
        assert extract_remaining_nouns("\u0000\u0000、東京") == ["東京"]


class TestAbbreviationsAndCompounds:
    def test_abbreviations(self):
        assert generate_abbreviations(["データベース設計", "React"]) == ["DB設計"]

    def test_compound_keywords(self):
        assert generate_compound_keywords(["AWS", "資格", "入門"]) == ["AWS資格"]

    def test_compound_requires_capitalized_latin(self):
        assert generate_compound_keywords(["aws", "資格"]) == []
