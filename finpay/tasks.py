"""Run the steps of a payment concurrently and collect their results."""

from __future__ import annotations

import argparse
import asyncio

DEBIT_DELAY = 1.0
LOG_DELAY = 2.0
NOTIFY_DELAY = 1.0


async def _simulate(label: str, amount: float, delay: float) -> str:
    await asyncio.sleep(delay)
    return f"{label}: {amount:.2f}"


async def debit(amount: float, delay: float = DEBIT_DELAY) -> str:
    """Pretend to debit the amount."""
    return await _simulate("Debited", amount, delay)


async def log_transaction(amount: float, delay: float = LOG_DELAY) -> str:
    """Pretend to write the transaction to a log."""
    return await _simulate("Transaction logged", amount, delay)


async def notify_user(amount: float, delay: float = NOTIFY_DELAY) -> str:
    """Pretend to notify the user."""
    return await _simulate("Notification sent for", amount, delay)


_STEPS = ((debit, DEBIT_DELAY), (log_transaction, LOG_DELAY), (notify_user, NOTIFY_DELAY))


async def run_payment_tasks(amount: float, scale: float = 1.0) -> list[str]:
    """Run all steps at once; return their results in order of completion."""
    jobs = [step(amount, delay * scale) for step, delay in _STEPS]
    return [await finished for finished in asyncio.as_completed(jobs)]


def main(argv: list[str] | None = None) -> int:
    """Process one payment and print each step as it finishes."""
    parser = argparse.ArgumentParser(prog="finpay-tasks", description=main.__doc__)
    parser.add_argument("--amount", type=float, default=100.0)
    parser.add_argument("--scale", type=float, default=1.0, help="multiplier for the delays")
    args = parser.parse_args(argv)

    for line in asyncio.run(run_payment_tasks(args.amount, args.scale)):
        print(line)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())