"""
Message Normalization
======================

Turns raw chat text into signals, a canonical grouping key and an intent
fingerprint.

Everything here is pure and deterministic: the same text always yields the
same signals, and the same signal set (in any order, with any duplicates)
always yields the same canonical key.
"""

import re
from functools import lru_cache
from typing import Iterable, List, Optional, Set

from ticketdedup.grouping.domain.entities import IntentFingerprint, NormalizedMessage


STOPWORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "for", "from",
    "has", "he", "in", "is", "it", "its", "of", "on", "that", "the",
    "to", "was", "will", "with", "this", "but", "they", "have",
    "had", "what", "said", "each", "which", "their", "time", "if", "up",
    "out", "many", "then", "them", "these", "so", "some", "her", "would",
    "make", "like", "into", "him", "two", "more", "very", "after",
    "words", "long", "than", "first", "been", "call", "who", "oil", "sit",
    "now", "find", "down", "day", "did", "get", "come", "made", "may", "part",
    "our", "you", "your", "can", "not", "there", "when", "where", "how",
})

# Generic symptom and filler words. Paraphrases of one issue rarely agree on
# these, so they never become content signals.
NOISE_WORDS = frozenset({
    "broken", "broke", "error", "errors", "still", "give", "gives", "giving",
    "issue", "issues", "problem", "problems", "work", "working", "works",
    "getting", "please", "help", "anyone", "someone", "again", "really",
    "thing", "things", "just", "also", "fail", "failing", "failed", "fails",
    "seem", "seems", "keep", "keeps", "happen", "happens", "happening",
    "anymore", "today", "should", "could", "need", "want", "trying", "tried",
    "know", "thank", "thanks", "hello", "doesn", "isn", "wasn", "didn",
    "when", "where", "there", "here", "about", "every", "since",
})

ERROR_PHRASES = (
    "permission denied",
    "unauthorized",
    "access denied",
    "forbidden",
    "not found",
    "internal server error",
)

ROLE_KEYWORDS = ("admin", "superadmin", "owner", "user", "guest", "member", "viewer")

PERMISSION_KEYWORDS = (
    "access", "permission", "restrict", "rbac", "authorize", "deny",
    "allow", "grant", "revoke", "authorization",
)

OBJECT_KEYWORDS = (
    "budget", "invoice", "export", "csv", "pdf", "report",
    "dashboard", "analytics", "data", "file",
)

PLATFORM_KEYWORDS = (
    "api", "database", "db", "frontend", "backend", "ui", "ux",
    "mobile", "web", "ios", "android", "desktop",
)

FEATURE_KEYWORDS = (
    "auth", "login", "payment", "search", "filter", "export", "import", "oauth", "sso",
)

AUTH_TERMS = ("oauth", "sso")

UI_COMPONENTS = (
    "button", "header", "footer", "navbar", "sidebar", "modal", "dialog",
    "menu", "icon", "logo", "link", "banner", "card", "table", "form",
    "input", "dropdown", "tooltip", "checkbox", "badge", "tab",
)

COLOR_WORDS = (
    "red", "blue", "green", "yellow", "orange", "purple", "pink",
    "black", "white", "gray", "grey", "brown", "teal",
)

STYLE_WORDS = ("color", "colour", "style", "font", "theme", "dark", "light", "bold")

STYLING_VERBS = ("make", "set", "change", "ensure", "update")

CRUD_VERBS = frozenset({
    "create", "read", "update", "delete", "add", "remove", "edit",
    "make", "set", "change", "ensure", "show", "view", "get", "list",
})

SIGNAL_PREFIXES = ("platform_", "feature_", "error_")

SYNONYMS = {
    "super admin": "superadmin",
    "super-admin": "superadmin",
    "super_admin": "superadmin",
    "rbac": "access_control",
    "permission": "access_control",
    "permissions": "access_control",
    "access": "access_control",
    "restrict": "access_control",
    "authorization": "access_control",
    "authz": "access_control",
    "budget page": "budget",
    "budget module": "budget",
}

# Intent cues, checked in priority order
BUG_CUES = (
    "bug", "broken", "broke", "crash", "error", "fail", "exception",
    "not working", "doesn't work", "does not work", "unable", "can't", "cannot",
)
ACCESS_CUES = (
    "permission", "access", "rbac", "role", "restrict", "authoriz",
    "allow", "deny", "grant", "revoke", "forbidden", "unauthorized",
)
ADD_FEATURE_CUES = (
    "add", "can we", "could we", "would be nice", "feature", "support for",
    "implement", "ability to", "option to", "new",
)

MAX_KEY_TOKENS = 10

_ERROR_CODE_RE = re.compile(r"\b(\d{3,4}|ERR[_\-]\w+)\b", re.IGNORECASE)
_ENDPOINT_RE = re.compile(r"/(?:v\d+|api|auth)/[\w/\-]+", re.IGNORECASE)
_WORD_SPLIT_RE = re.compile(r"[\s\W]+")
_HEX_COLOR_RE = re.compile(r"#[0-9a-f]{3}(?:[0-9a-f]{3})?\b", re.IGNORECASE)
_NUMBER_RE = re.compile(r"^\d+$")
_STATUS_CODE_RE = re.compile(r"^(?:[45]\d{2}|err_\w+)$")


@lru_cache(maxsize=512)
def _keyword_pattern(keyword: str) -> re.Pattern:
    # Short keywords must match a whole word; longer ones match word prefixes
    escaped = re.escape(keyword)
    if len(keyword) <= 3:
        return re.compile(rf"\b{escaped}\b")
    return re.compile(rf"\b{escaped}\w*")


def keyword_present(text: str, keyword: str) -> bool:
    """Check whether ``keyword`` occurs in lowercase ``text``."""
    return _keyword_pattern(keyword).search(text) is not None


def _first_present(text: str, keywords: Iterable[str]) -> Optional[str]:
    for keyword in keywords:
        if keyword_present(text, keyword):
            return keyword
    return None


def stem(word: str) -> str:
    """Strip a trailing -ing, -ed or -s."""
    if word.endswith("ing") and len(word) > 5:
        return word[:-3]
    if word.endswith("ed") and len(word) > 4:
        return word[:-2]
    if word.endswith("s") and len(word) > 3 and not word.endswith(("ss", "us", "is")):
        return word[:-1]
    return word


def strip_signal_prefix(signal: str) -> str:
    for prefix in SIGNAL_PREFIXES:
        if signal.startswith(prefix):
            return signal[len(prefix):]
    return signal


def normalize_signal(signal: str) -> str:
    """Map a signal through the synonym table."""
    lower = signal.lower().strip()
    if lower in SYNONYMS:
        return SYNONYMS[lower]
    for variant, canonical in SYNONYMS.items():
        if variant in lower:
            return canonical
    return lower


def canonical_signal(signal: str) -> str:
    """Prefix-stripped, synonym-normalized form used for keys and overlap."""
    return normalize_signal(strip_signal_prefix(signal.lower().strip()))


def _is_subsumed(word: str, signals: Iterable[str]) -> bool:
    for signal in signals:
        bare = strip_signal_prefix(signal)
        if word in bare:
            return True
        if len(bare) >= 3 and bare in word:
            return True
    return False


def normalize_message(text: str) -> NormalizedMessage:
    """
    Lowercase the text and extract grouping signals.

    Detectors run independently and their results are unioned: error codes,
    error phrases, roles, permission verbs, object nouns, platform and
    feature keywords (prefixed), auth terms, endpoint paths and finally the
    remaining content words.

    Args:
        text: Raw message text

    Returns:
        NormalizedMessage with deduplicated signals
    """
    trimmed = (text or "").strip()
    normalized = trimmed.lower()
    signals: List[str] = []

    for code in _ERROR_CODE_RE.findall(trimmed):
        signals.append(re.sub(r"[^a-z0-9]", "_", code.lower()))

    for phrase in ERROR_PHRASES:
        if phrase in normalized:
            signals.extend(w for w in phrase.split() if len(w) > 2)

    for keywords in (ROLE_KEYWORDS, PERMISSION_KEYWORDS, OBJECT_KEYWORDS):
        signals.extend(k for k in keywords if keyword_present(normalized, k))

    signals.extend(f"platform_{k}" for k in PLATFORM_KEYWORDS if keyword_present(normalized, k))
    signals.extend(f"feature_{k}" for k in FEATURE_KEYWORDS if keyword_present(normalized, k))
    signals.extend(t for t in AUTH_TERMS if keyword_present(normalized, t))

    for endpoint in _ENDPOINT_RE.findall(trimmed):
        signals.append(endpoint.lower().replace("/", "_"))

    for raw in _WORD_SPLIT_RE.split(normalized):
        if len(raw) <= 2 or raw in STOPWORDS or raw in NOISE_WORDS:
            continue
        word = stem(raw)
        if len(word) < 4 or word in STOPWORDS or word in NOISE_WORDS:
            continue
        if not _is_subsumed(word, signals):
            signals.append(word)

    return NormalizedMessage(normalized_text=normalized, signals=frozenset(signals))


def _has_style_word(tokens: Set[str]) -> bool:
    return any(t in COLOR_WORDS or t in STYLE_WORDS for t in tokens)


def _has_subject(tokens: Set[str]) -> bool:
    return any(t in UI_COMPONENTS or t in OBJECT_KEYWORDS for t in tokens)


def compute_canonical_key(signals: Iterable[str], text: Optional[str] = None) -> Optional[str]:
    """
    Compute the canonical grouping key for a set of signals.

    A colour or style word next to a styling verb ("make it blue") says
    nothing about *what* should change, so such keys are suppressed unless a
    UI component or object keyword names the subject.

    Args:
        signals: Signal tokens, any order, duplicates allowed
        text: Raw message text, used only for the styling-verb check

    Returns:
        Sorted ``|``-joined tokens (at most 10), or None
    """
    tokens = {canonical_signal(s) for s in signals}
    tokens.discard("")
    if not tokens:
        return None

    if text is not None and _has_style_word(tokens):
        lowered = text.lower()
        if _first_present(lowered, STYLING_VERBS) and not _has_subject(tokens):
            return None

    return "|".join(sorted(tokens)[:MAX_KEY_TOKENS])


def _detect_action(text: str, signals: Set[str]) -> Optional[str]:
    if _first_present(text, BUG_CUES) or any(_STATUS_CODE_RE.match(s) for s in signals):
        return "bug"
    if _first_present(text, ACCESS_CUES):
        return "access_control"
    if _first_present(text, ADD_FEATURE_CUES):
        return "add_feature"
    if _first_present(text, STYLING_VERBS) and (
        _first_present(text, COLOR_WORDS + STYLE_WORDS) or _HEX_COLOR_RE.search(text)
    ):
        return "style_change"
    return None


def _detect_object(text: str, signals: Set[str]) -> Optional[str]:
    for keywords in (UI_COMPONENTS, OBJECT_KEYWORDS):
        for keyword in keywords:
            if keyword in signals or keyword_present(text, keyword):
                return keyword

    for signal in sorted(signals):
        if (
            signal in STOPWORDS
            or signal in CRUD_VERBS
            or signal in COLOR_WORDS
            or signal in STYLE_WORDS
            or _NUMBER_RE.match(signal)
        ):
            continue
        return signal
    return None


def compute_intent_fingerprint(text: str, signals: Iterable[str]) -> IntentFingerprint:
    """
    Derive what the message asks for.

    Action priority is bug > access_control > add_feature > style_change.
    The value is the colour for style changes and the role for access
    control.
    """
    lowered = (text or "").lower()
    bare = {strip_signal_prefix(s) for s in signals}

    action = _detect_action(lowered, bare)
    obj = _detect_object(lowered, bare)

    value = None
    if action == "style_change":
        hex_match = _HEX_COLOR_RE.search(lowered)
        value = _first_present(lowered, COLOR_WORDS) or (hex_match.group(0) if hex_match else None)
    elif action == "access_control":
        value = _first_present(lowered, ROLE_KEYWORDS)

    key = f"{action}|{obj}|{value or '*'}" if action and obj else None
    return IntentFingerprint(action=action, object=obj, value=value, key=key)
