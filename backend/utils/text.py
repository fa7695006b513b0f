import unicodedata


def fold_word(text: str) -> str:
    """Trim, case-fold and strip diacritics so "  Paris " == "paris" == "Pârîs"."""
    decomposed = unicodedata.normalize("NFKD", (text or "").strip().casefold())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).strip()


def words_match(guess: str, word: str) -> bool:
    folded = fold_word(word)
    return bool(folded) and fold_word(guess) == folded


def clean_name(name: str) -> str:
    """Collapse inner whitespace runs and trim."""
    return " ".join((name or "").split())
