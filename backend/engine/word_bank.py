"""Built-in secret words for random word mode, one list per category."""
import random
from typing import Dict, List

from models.room import Category

WORD_BANK: Dict[Category, List[str]] = {
    Category.WORLD: [
        "Paris", "Tokyo", "Eiffel Tower", "Great Wall", "Amazon", "Sahara",
        "Mount Everest", "Venice", "Pyramids", "Niagara Falls", "New York",
        "Colosseum", "Sydney Opera House", "Machu Picchu", "Antarctica",
    ],
    Category.TURKIYE: [
        "Istanbul", "Cappadocia", "Pamukkale", "Ephesus", "Bosphorus",
        "Ankara", "Antalya", "Mount Ararat", "Galata Tower", "Hagia Sophia",
        "Trabzon", "Lake Van", "Göbekli Tepe", "İzmir", "Bodrum",
    ],
    Category.WORLD_FOOTBALL: [
        "Messi", "Ronaldo", "Maradona", "Pelé", "Zidane", "Real Madrid",
        "Barcelona", "World Cup", "Champions League", "Maracanã", "Anfield",
        "Penalty", "Offside", "Ballon d'Or", "Galatasaray",
    ],
    Category.NFL: [
        "Super Bowl", "Touchdown", "Quarterback", "Tom Brady", "Patrick Mahomes",
        "Green Bay Packers", "Dallas Cowboys", "Field Goal", "Hail Mary",
        "Lambeau Field", "Interception", "Draft", "End Zone", "Fumble", "Blitz",
    ],
}


def pick_word(category: Category, rng: random.Random) -> str:
    words = WORD_BANK.get(category) or WORD_BANK[Category.WORLD]
    return rng.choice(words)
