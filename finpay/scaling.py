"""Scaling ideas: shard routing, a read-through cache, stateful and stateless updates."""

from __future__ import annotations

import argparse
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Mapping

log = logging.getLogger(__name__)

DB_BALANCE = 25000
INITIAL_BALANCE = 1000
BASE_CREDIT = 1000
SHARD_SPLIT = "M"


def shard_for_user(user: str) -> int:
    """Route a user to shard 1 or 2 by the first letter of the name."""
    if not user:
        raise ValueError("user must not be empty")
    return 1 if user[0] <= SHARD_SPLIT else 2


def _default_shards() -> dict[int, dict[str, int]]:
    return {1: {"Alice": 1000}, 2: {"Ravi": 25000, "Meena": 500}}


@dataclass
class ShardRouter:
    """Balances split across shards, with lookups routed by user."""

    shards: dict[int, dict[str, int]] = field(default_factory=_default_shards)

    def shard_of(self, user: str) -> int:
        return shard_for_user(user)

    def balance(self, user: str) -> int:
        """Return the user's balance from its shard, or 0 if unknown."""
        return self.shards.get(self.shard_of(user), {}).get(user, 0)


# The simulated database holds the same balance for every user it is asked about.
_SIMULATED_DB: defaultdict[str, int] = defaultdict(lambda: DB_BALANCE)


@dataclass
class BalanceCache:
    """A read-through cache in front of a slow balance lookup."""

    fetch: Callable[[str], int] = field(default_factory=lambda: _SIMULATED_DB.__getitem__)
    hits: int = 0
    misses: int = 0
    _entries: dict[str, int] = field(default_factory=dict, init=False, repr=False)

    def __contains__(self, user: object) -> bool:
        return user in self._entries

    def get_balance(self, user: str) -> int:
        """Return the cached balance, fetching and storing it on a miss."""
        if user in self._entries:
            self.hits += 1
            log.debug("cache hit for %s", user)
            return self._entries[user]
        self.misses += 1
        log.debug("cache miss for %s", user)
        value = self.fetch(user)
        self._entries[user] = value
        return value


@dataclass
class StatefulBalance:
    """A balance that remembers every update made to it."""

    balance: int = INITIAL_BALANCE

    def update(self, amount: int) -> int:
        self.balance += amount
        return self.balance


def add_balance(user: str, amount: int) -> int:
    """Compute a balance from the input alone; the user does not matter."""
    return amount + BASE_CREDIT


def _format_map(mapping: Mapping[str, int]) -> str:
    items = " ".join(f"{key}:{mapping[key]}" for key in sorted(mapping))
    return f"map[{items}]"


def main(argv: list[str] | None = None) -> int:
    """Walk through sharding, caching and state handling."""
    parser = argparse.ArgumentParser(prog="finpay-scaling", description=main.__doc__)
    parser.add_argument("--user", default="Ravi")
    parser.add_argument("--pause", type=float, default=2.0, help="seconds between cache reads")
    args = parser.parse_args(argv)

    router = ShardRouter()
    single = {user: bal for shard in router.shards.values() for user, bal in shard.items()}
    print("Single DB (no sharding):")
    print(_format_map(single))
    print("\nSharded DBs:")
    for number in sorted(router.shards):
        print(f"Shard {number}:", _format_map(router.shards[number]))
    shard = router.shard_of(args.user)
    print(f"\nUser '{args.user}' belongs to Shard {shard}")
    print(f"Balance: {router.balance(args.user)} (from Shard {shard})")

    cache = BalanceCache()
    for read in range(3):
        if read == 2:
            time.sleep(args.pause)
        if args.user in cache:
            print("Cache hit for", args.user)
        else:
            print("Cache miss for", args.user, "- fetching from DB...")
        print("Balance:", cache.get_balance(args.user))

    state = StatefulBalance()
    print(f"Initial balance: {state.balance}")
    for amount in (500, 300):
        print(f"After adding {amount}: {state.update(amount)}")
    print("\nNote: This pattern doesn't scale well across multiple pods!")

    for user, amount in (("Ravi", 5000), ("Meena", 3000)):
        print(f"User: {user}, Result: {add_balance(user, amount)}")
    print(f"User: Ravi, Result: {add_balance('Ravi', 5000)} (consistent)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())