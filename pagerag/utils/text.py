"""
Text heuristics shared by segmentation and lexical retrieval
"""
import re
from typing import List

HANGUL_WORD_RE = re.compile(r"[가-힣]+")
LATIN_WORD_RE = re.compile(r"[a-zA-Z]+")
HAN_CHAR_RE = re.compile(r"[一-龯]")
SENTENCE_SPLIT_RE = re.compile(r"[.!?]")
TERM_RE = re.compile(r"[가-힣]+|[a-z0-9]+")


def word_count(text: str) -> int:
    """Count Hangul syllable-block runs plus Latin word runs"""
    return len(HANGUL_WORD_RE.findall(text)) + len(LATIN_WORD_RE.findall(text))


def sentence_count(text: str) -> int:
    # Pieces around terminators, trailing remainder included
    return len(SENTENCE_SPLIT_RE.split(text))


def han_char_ratio(text: str) -> float:
    words = word_count(text)
    if words == 0:
        return 0.0
    return len(HAN_CHAR_RE.findall(text)) / words


def terms(text: str) -> List[str]:
    """Lower-cased matching terms, order preserved, duplicates removed"""
    seen = []
    for term in TERM_RE.findall(text.lower()):
        if term not in seen:
            seen.append(term)
    return seen


def term_overlap_score(query: str, text: str) -> float:
    """
    Fraction of query terms found in the text.

    Hangul terms of three or more syllables also match without their last
    syllable, which absorbs most trailing particles (문장은 -> 문장).
    """
    query_terms = terms(query)
    if not query_terms:
        return 0.0

    haystack = text.lower()
    matched = 0
    for term in query_terms:
        if term in haystack:
            matched += 1
        elif HANGUL_WORD_RE.fullmatch(term) and len(term) >= 3 and term[:-1] in haystack:
            matched += 1

    return matched / len(query_terms)
