"""
Message Filters
================

Cheap gate that drops pleasantries before any model call is made.
"""

IGNORE_PHRASES = frozenset({
    "thanks", "thank you", "ok", "okay", "cool", "dinner", "see you",
    "lunch", "bye", "hi", "hello", "hey", "sure", "yep", "yeah",
    "no problem", "np", "got it",
})


def should_process_message(normalized_text: str) -> bool:
    """
    Decide whether a normalized message is worth classifying.

    Only an exact match against an acknowledgement phrase is dropped, after
    stripping trailing punctuation; "ok, but the export is broken" still
    goes through.

    Args:
        normalized_text: Lowercased, trimmed message text

    Returns:
        False for empty text and bare acknowledgements
    """
    text = (normalized_text or "").strip()
    if not text:
        return False
    return text.rstrip(".,!?").strip() not in IGNORE_PHRASES
