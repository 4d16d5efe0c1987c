"""Content normalization: markup-free text, sentences, reading metrics.

Pipeline for a raw title/body pair:
    strip markup -> strip URLs and e-mails -> collapse whitespace
    -> split sentences -> drop boilerplate/garbage sentences
    -> word count, reading time, difficulty band

Everything here is pure; articles that end up with no usable sentences are
still returned (empty sentence tuple) rather than dropped.
"""

from __future__ import annotations

import math
import re
from typing import Dict, List, Optional, Tuple

from bs4 import BeautifulSoup

from newsroom.ingestion.article_types import NormalizedArticle, Sentence

MIN_SENTENCE_CHARS = 15
MAX_SENTENCE_CHARS = 500
MAX_SUMMARY_CHARS = 500
WORDS_PER_MINUTE = 200

_DROP_TAGS = [
    "script", "style", "noscript", "figure", "figcaption", "aside", "nav",
    "header", "footer", "img", "video", "audio", "iframe",
]

_URL_RE = re.compile(r"(?:https?://|www\.)\S+", re.IGNORECASE)
_EMAIL_RE = re.compile(r"\S+@\S+\.\S+")
_WS_RE = re.compile(r"\s+")
_TRUNCATION_RE = re.compile(r"\s*\[\+\d+ chars\]\s*$")

# A sentence ends at [.!?]+ (plus a closing quote) followed by whitespace and an
# uppercase letter, optionally behind an opening quote, or at end of text.
_SENTENCE_END_RE = re.compile(r"[.!?]+[\"'\u201d\u2019]?(?:\s+(?=[\"'\u201c\u2018]?[A-Z])|\s*$)")

_BOILERPLATE_PATTERNS = [
    re.compile(r"^(Photo|Image|Source|Credit|Copyright|Via|Read more|Continue reading)", re.IGNORECASE),
    re.compile(r"^(Click here|Subscribe|Follow|Share)", re.IGNORECASE),
    re.compile(r"^(Published|Updated|Posted|By:)", re.IGNORECASE),
    re.compile(r"^\d+\s*(minutes?|hours?|days?)\s+ago", re.IGNORECASE),
    re.compile(r"^(Tags?|Categories?|Filed under)", re.IGNORECASE),
]
_LETTER_RE = re.compile(r"[a-zA-Z]")
_DIGIT_RE = re.compile(r"\d")
_SPECIAL_RE = re.compile(r"[^a-zA-Z0-9\s.,!?;:()'\"\u201c\u201d\u2018\u2019-]")

_COMMON_WORDS = {
    "this", "that", "with", "have", "will", "been", "from", "they", "know",
    "want", "good", "much", "some", "time", "very", "when", "come", "here",
    "just", "like", "long", "make", "many", "over", "such", "take", "than",
    "them", "well", "were", "what", "your", "said", "says", "their", "there",
    "about", "after", "would", "could", "which",
}


def clean_markup(text: str) -> str:
    """Drop HTML tags (and the contents of script/style/media blocks), decode entities."""
    if not text:
        return ""
    if "<" not in text and "&" not in text:
        return text
    soup = BeautifulSoup(text, "html.parser")
    for tag in soup(_DROP_TAGS):
        tag.decompose()
    return soup.get_text(" ")


def strip_urls(text: str) -> str:
    text = _URL_RE.sub(" ", text or "")
    return _EMAIL_RE.sub(" ", text)


def collapse_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text or "").strip()


def strip_truncation_marker(text: str) -> str:
    """NewsAPI cuts content and appends '[+1234 chars]'."""
    return _TRUNCATION_RE.sub("", text or "").strip()


def clean_text(text: str) -> str:
    return collapse_whitespace(strip_urls(clean_markup(text)))


def count_words(text: str) -> int:
    return len((text or "").split())


def split_raw_sentences(text: str) -> List[str]:
    out: List[str] = []
    last = 0
    for m in _SENTENCE_END_RE.finditer(text):
        piece = text[last:m.end()].strip()
        if piece:
            out.append(piece)
        last = m.end()
    tail = text[last:].strip()
    if tail:
        out.append(tail)
    return out


def is_valid_sentence(sentence: str) -> bool:
    n = len(sentence)
    if n < MIN_SENTENCE_CHARS or n > MAX_SENTENCE_CHARS:
        return False
    if not _LETTER_RE.search(sentence):
        return False
    if any(p.search(sentence) for p in _BOILERPLATE_PATTERNS):
        return False
    # mostly numbers: tables, scores, tickers
    if len(_DIGIT_RE.findall(sentence)) > n * 0.3:
        return False
    if len(_SPECIAL_RE.findall(sentence)) > n * 0.1:
        return False
    return True


def split_into_sentences(text: str) -> Tuple[Sentence, ...]:
    """Valid sentences of already-cleaned text, numbered from 1 in source order."""
    if not text or not text.strip():
        return ()
    valid = [s for s in split_raw_sentences(text) if is_valid_sentence(s)]
    return tuple(
        Sentence(text=s, order=i, word_count=count_words(s))
        for i, s in enumerate(valid, start=1)
    )


def create_summary(text: str, max_length: int = MAX_SUMMARY_CHARS,
                   sentences: Optional[Tuple[Sentence, ...]] = None) -> str:
    """Greedy concatenation of whole sentences up to max_length characters."""
    if sentences is None:
        sentences = split_into_sentences(text)
    summary = ""
    for s in sentences:
        candidate = f"{summary} {s.text}" if summary else s.text
        if len(candidate) > max_length:
            break
        summary = candidate
    return summary or (text or "")[:max_length].strip()


def difficulty_for(word_count: int, sentence_count: int) -> int:
    """Difficulty band 1-5 from average words per sentence."""
    avg = word_count / sentence_count if sentence_count > 0 else float(word_count)
    if avg < 10:
        return 1
    if avg < 15:
        return 2
    if avg < 20:
        return 3
    if avg < 25:
        return 4
    return 5


def reading_time_seconds(word_count: int) -> int:
    return int(math.ceil(word_count / WORDS_PER_MINUTE)) * 60


def extract_key_phrases(text: str, limit: int = 10) -> List[str]:
    words = re.sub(r"[^a-z\s]", " ", (text or "").lower()).split()
    freq: Dict[str, int] = {}
    for w in words:
        if len(w) <= 3 or w in _COMMON_WORDS:
            continue
        freq[w] = freq.get(w, 0) + 1
    ranked = sorted(freq.items(), key=lambda kv: (-kv[1], kv[0]))
    return [w for w, _ in ranked[:limit]]


def normalize(raw_title: str, raw_body: str, raw_summary: Optional[str] = None) -> NormalizedArticle:
    title = clean_text(raw_title)
    content = clean_text(raw_body)
    sentences = split_into_sentences(content)
    word_count = count_words(content)

    summary_text = clean_text(raw_summary) if raw_summary else ""
    if summary_text:
        summary = summary_text[:MAX_SUMMARY_CHARS].strip()
    else:
        summary = create_summary(content, MAX_SUMMARY_CHARS, sentences=sentences)

    return NormalizedArticle(
        title=title,
        summary=summary,
        content=content,
        sentences=sentences,
        word_count=word_count,
        reading_time_seconds=reading_time_seconds(word_count),
        difficulty=difficulty_for(word_count, len(sentences)),
    )
