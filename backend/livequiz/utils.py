import random
import time
from typing import List, Optional


def now_ts() -> float:
    return time.time()


def name_key(name: str) -> str:
    return name.strip().casefold()


def shuffled_order(size: int, rng: Optional[random.Random] = None) -> List[int]:
    order = list(range(size))
    (rng or random).shuffle(order)
    return order
