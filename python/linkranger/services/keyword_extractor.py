"""Heuristic keyword extraction for Japanese/English titles.

A fixed battery of regex passes over the title (and, for some passes, the
description). The output is a set of plausible candidate tags, not a
linguistically correct tokenization:

(a) protected compounds: brand-like mixed-script tokens, fixed technical
    terms, long katakana runs and corporate/academic suffixes; masked before
    the noun pass so they are not split
(b) residual nouns from the masked text, bounded by particles/punctuation
(c) suffix compounds (X方法, X対策, ...), question/purpose phrases,
    abbreviations and Latin x Japanese compounds
(d) bracket contents
(e) Latin proper nouns, multi-word phrases and their acronyms
(f) hashtags and year tokens

Every returned term is 1..30 characters long.
"""

import re
from collections.abc import Iterable

MIN_TERM_CHARS = 1
MAX_TERM_CHARS = 30
MAX_HASHTAG_CHARS = 20

# Character classes
KANJI = "一-龠々"
HIRAGANA = "ぁ-ゖ"
KATAKANA = "ァ-ヴー"
LATIN = "A-Za-z"

_JP_OR_LATIN = f"[{KANJI}{HIRAGANA}{KATAKANA}{LATIN}]"

# (a) protected compounds
_BRAND_PATTERNS = (
    re.compile(f"[{KATAKANA}]{{2,}}[{LATIN}][A-Za-z0-9]*"),
    re.compile(f"[{LATIN}][A-Za-z0-9]*[{KATAKANA}]{{2,}}"),
    re.compile(f"[{KANJI}]{{1,3}}[{KATAKANA}]{{2,}}"),
)
_MIN_BRAND_CHARS = 3

TECHNICAL_TERMS = (
    "デザインシステム",
    "デザインガイドライン",
    "マネジメントシステム",
    "プロジェクトマネジメント",
    "データベース",
    "アプリケーション",
    "インフラストラクチャ",
    "フレームワーク",
    "プラットフォーム",
    "アーキテクチャ",
    "ソリューション",
)

_KATAKANA_RUN = re.compile(f"[{KATAKANA}]{{3,}}")

_KANJI_SUFFIX_PATTERNS = (
    re.compile(
        f"[{KANJI}]{{2,}}(?:会社|株式会社|コーポレーション|グループ|ホールディングス)"
    ),
    re.compile(f"[{KANJI}]{{2,}}(?:大学|学校|研究所|機構)"),
    re.compile(f"[{KANJI}]{{2,}}(?:システム|サービス|ソリューション)"),
)

_DYNAMIC_COMPOUND_PATTERNS = (
    re.compile(
        f"[{KANJI}{KATAKANA}{LATIN}]+(?:システム|サービス|プラットフォーム|ソリューション)"
    ),
    re.compile(f"[{KANJI}{KATAKANA}{LATIN}]+(?:マネジメント|コンサルティング)"),
)
_MIN_DYNAMIC_COMPOUND_CHARS = 4

# (b) residual nouns
_NOUN_PATTERN = re.compile(
    f"[{KANJI}{HIRAGANA}{KATAKANA}]{{2,6}}(?=[はがをにへとでからまで｜？！。、\\s]|$)"
)
_STOP_NOUN_PATTERNS = (
    re.compile(r"^[はがをにへとでからまで、。！？]+$"),
    re.compile(r"^(?:する|です|ます|だった|では|ある|した|でした)+$"),
    re.compile(r"^(?:この|その|あの|どの|これ|それ|あれ|どれ|他)+$"),
    re.compile(r"^(?:という|から|でも|やはり|だけ|まで|など)+$"),
)

_MASK_TOKEN = "\u0000"

# (c) compounds, phrases and abbreviations
_SUFFIX_COMPOUND_PATTERNS = tuple(
    re.compile(f"({_JP_OR_LATIN}+){suffix}")
    for suffix in ("方法", "対策", "メリット", "効果", "手順", "やり方")
)
_QUESTION_PATTERNS = tuple(
    re.compile(f"({_JP_OR_LATIN}+){suffix}")
    for suffix in ("とは", "って何", "の意味", "について")
)
_PURPOSE_PATTERNS = tuple(
    re.compile(f"({_JP_OR_LATIN}+){suffix}") for suffix in ("活用", "選び方", "比較", "評価")
)

ABBREVIATIONS = {
    "勉強方法": "勉強法",
    "学習方法": "学習法",
    "攻略方法": "攻略法",
    "プログラミング": "プログラム",
    "アプリケーション": "アプリ",
    "データベース": "DB",
    "マネジメント": "管理",
}

_LATIN_WORD = re.compile(r"^[A-Z][A-Za-z0-9]*$")
_JAPANESE_CHAR = re.compile(f"[{KANJI}{HIRAGANA}{KATAKANA}]")
_COMPOUNDABLE_JP = re.compile("メリット|デメリット|勉強法|資格|試験|対策|効果|方法")

# (d) brackets
_BRACKET_PATTERN = re.compile(r"[「『（(]([^」』）)]+)[」』）)]")

# (e) Latin terms; ASCII word boundaries so "GitHubの" still yields "GitHub"
_TITLE_ACRONYM = re.compile(r"\b[A-Z][A-Za-z0-9]{1,10}\b", re.ASCII)
_LATIN_PHRASE = re.compile(r"\b[A-Z][A-Za-z0-9]+(?:\s[A-Z][A-Za-z0-9]+)*\b", re.ASCII)

# Suffix added to a Latin phrase -> word the title must contain
LATIN_JP_SUFFIXES = {
    "メリット": "メリット",
    "勉強法": "勉強方法",
    "資格": "資格",
    "試験": "試験",
    "対策": "対策",
}

# (f) hashtags and years
_HASHTAG = re.compile(r"#(\w+)")
_YEAR = re.compile(r"(?<![0-9])(?:20\d{2}|令和\d+|平成\d+)年?(?![0-9])")


class _OrderedTerms:
    """Insertion-ordered set of terms."""

    def __init__(self) -> None:
        self._terms: dict[str, None] = {}

    def add(self, term: str) -> None:
        term = term.strip()
        if term:
            self._terms.setdefault(term, None)

    def extend(self, terms: Iterable[str]) -> None:
        for term in terms:
            self.add(term)

    def as_list(self) -> list[str]:
        return list(self._terms)


def _unique(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(items))


def extract_protected_compounds(text: str) -> list[str]:
    """Compound words and proper nouns that must not be split."""
    found: list[str] = []

    for pattern in _BRAND_PATTERNS:
        found.extend(m for m in pattern.findall(text) if len(m) >= _MIN_BRAND_CHARS)

    for term in TECHNICAL_TERMS:
        if term in text:
            found.append(term)

    found.extend(_KATAKANA_RUN.findall(text))

    for pattern in _KANJI_SUFFIX_PATTERNS:
        found.extend(pattern.findall(text))

    for pattern in _DYNAMIC_COMPOUND_PATTERNS:
        found.extend(
            m.group(0)
            for m in pattern.finditer(text)
            if len(m.group(0)) >= _MIN_DYNAMIC_COMPOUND_CHARS
        )

    return _unique(found)


def _is_stop_noun(noun: str) -> bool:
    return any(pattern.match(noun) for pattern in _STOP_NOUN_PATTERNS)


def extract_remaining_nouns(masked_text: str) -> list[str]:
    """Nouns left over after protected compounds were masked out."""
    return [
        noun
        for noun in _NOUN_PATTERN.findall(masked_text)
        if len(noun) >= 2 and _MASK_TOKEN not in noun and not _is_stop_noun(noun)
    ]


def _mask(text: str, compounds: list[str]) -> str:
    # Longest first so a compound never leaves a fragment of a longer one behind
    for compound in sorted(compounds, key=len, reverse=True):
        text = text.replace(compound, _MASK_TOKEN)
    return text


def extract_japanese_keywords(text: str) -> list[str]:
    keywords = extract_protected_compounds(text)
    keywords.extend(extract_remaining_nouns(_mask(text, keywords)))

    for pattern in _SUFFIX_COMPOUND_PATTERNS:
        for match in pattern.finditer(text):
            keywords.append(match.group(0))
            keywords.append(match.group(1))

    return keywords


def extract_meaningful_phrases(text: str) -> list[str]:
    """Subjects of question phrases and purpose phrases."""
    phrases: list[str] = []

    for pattern in _QUESTION_PATTERNS:
        phrases.extend(match.group(1) for match in pattern.finditer(text))

    for pattern in _PURPOSE_PATTERNS:
        for match in pattern.finditer(text):
            phrases.append(match.group(0))
            phrases.append(match.group(1))

    return phrases


def generate_abbreviations(keywords: Iterable[str]) -> list[str]:
    abbreviations = []
    for keyword in keywords:
        for full, short in ABBREVIATIONS.items():
            if full in keyword:
                abbreviations.append(keyword.replace(full, short, 1))
    return abbreviations


def extract_title_keywords(title: str) -> list[str]:
    keywords: list[str] = []
    keywords.extend(_TITLE_ACRONYM.findall(title))
    keywords.extend(re.findall(f"[{KATAKANA}]{{3,15}}", title))
    keywords.extend(extract_japanese_keywords(title))
    keywords.extend(extract_meaningful_phrases(title))
    keywords.extend(generate_abbreviations(keywords))
    return _unique(keywords)


def generate_compound_keywords(keywords: list[str]) -> list[str]:
    """Latin term x Japanese term combinations (e.g. "AWS" + "資格" -> "AWS資格")."""
    latin_terms = [k for k in keywords if _LATIN_WORD.match(k)]
    japanese_terms = [
        k for k in keywords if _JAPANESE_CHAR.search(k) and _COMPOUNDABLE_JP.search(k)
    ]
    return [f"{latin}{jp}" for latin in latin_terms for jp in japanese_terms]


def _latin_terms(text: str, title: str) -> list[str]:
    terms: list[str] = []
    for phrase in _LATIN_PHRASE.findall(text):
        if len(phrase) < 2:
            continue
        terms.append(phrase)

        if " " in phrase:
            acronym = "".join(word[0] for word in phrase.split())
            if len(acronym) > 1:
                terms.append(acronym)

        for suffix, trigger in LATIN_JP_SUFFIXES.items():
            if trigger in title:
                terms.append(f"{phrase}{suffix}")
    return terms


def _bounded(term: str, max_chars: int = MAX_TERM_CHARS) -> bool:
    return MIN_TERM_CHARS <= len(term) <= max_chars


def extract_key_terms(title: str, description: str | None = None) -> list[str]:
    """Extract candidate tags from a title and optional description.

    Returns:
        Ordered, de-duplicated list of terms, each 1..30 characters.
    """
    title = title or ""
    all_text = f"{title} {description or ''}"
    terms = _OrderedTerms()

    title_keywords = extract_title_keywords(title)
    terms.extend(title_keywords)
    terms.extend(generate_compound_keywords(title_keywords))

    for content in _BRACKET_PATTERN.findall(all_text):
        terms.add(content)

    terms.extend(_latin_terms(all_text, title))

    for tag in _HASHTAG.findall(all_text):
        if _bounded(tag, MAX_HASHTAG_CHARS):
            terms.add(tag)

    terms.extend(m.group(0) for m in _YEAR.finditer(all_text))

    return [term for term in terms.as_list() if _bounded(term)]
