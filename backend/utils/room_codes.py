import random
import string
from typing import Optional

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_room_code(length: int = 6, rng: Optional[random.Random] = None) -> str:
    rng = rng or random.SystemRandom()
    return "".join(rng.choice(ROOM_CODE_ALPHABET) for _ in range(length))


def normalize_room_code(code: str) -> str:
    return (code or "").strip().upper()


def is_valid_room_code(code: str, length: int = 6) -> bool:
    return len(code) == length and all(ch in ROOM_CODE_ALPHABET for ch in code)
