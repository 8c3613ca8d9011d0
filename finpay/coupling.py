"""Loose coupling: interfaces for fraud checks and notifiers, queues and events."""

from __future__ import annotations

import argparse
import os
import threading
import time
from dataclasses import dataclass
from queue import Queue
from typing import Mapping, Optional, Protocol, runtime_checkable

FRAUD_LIMIT = 100000
DEFAULT_FRAUD_URL = "http://fraud-service:8080"
TRANSACTION_CREATED = "TransactionCreated"


@runtime_checkable
class FraudChecker(Protocol):
    """Decides whether a payment may go ahead."""

    def check(self, amount: int) -> bool:
        ...


@runtime_checkable
class Notifier(Protocol):
    """Delivers a message; raises on failure."""

    def send(self, message: str) -> None:
        ...


class SimpleFraudChecker:
    """Approves anything below the fraud limit."""

    def check(self, amount: int) -> bool:
        return amount < FRAUD_LIMIT


class SimpleNotifier:
    def send(self, message: str) -> None:
        print("Notification:", message)


class TwilioNotifier:
    def send(self, message: str) -> None:
        print("Twilio SMS sent:", message)


class SNSNotifier:
    def send(self, message: str) -> None:
        print("AWS SNS sent:", message)


class SMSChannel:
    def send(self, message: str) -> None:
        print("SMS sent:", message)


class EmailChannel:
    def send(self, message: str) -> None:
        print("Email sent:", message)


def process_payment(amount: int, fraud_checker: FraudChecker, notifier: Notifier) -> bool:
    """Notify on success when the fraud check passes; return whether it did."""
    if not fraud_checker.check(amount):
        return False
    notifier.send("Payment processed successfully")
    return True


def notify(channel: Notifier, message: str) -> None:
    """Send a message through whichever channel is given."""
    channel.send(message)


@dataclass(frozen=True)
class Transaction:
    id: str
    amount: float


@dataclass(frozen=True)
class Event:
    name: str
    data: str


def payment_service(
    queue: "Queue[Optional[Transaction]]", count: int = 3, gap: float = 1.0
) -> list[Transaction]:
    """Queue count transactions, pausing between them; return what was queued."""
    queued = []
    for i in range(1, count + 1):
        tx = Transaction(id=f"TXN{i}", amount=float(i * 1000))
        print("Payment Service: queued", tx.id)
        queue.put(tx)
        queued.append(tx)
        time.sleep(gap)
    return queued


def fraud_service(queue: "Queue[Optional[Transaction]]", check_time: float = 2.0) -> list[str]:
    """Check transactions until None arrives; return the approved ids."""
    approved = []
    while (tx := queue.get()) is not None:
        print("Fraud Service: processing", tx.id)
        time.sleep(check_time)
        print("Fraud Service: approved", tx.id)
        approved.append(tx.id)
    return approved


def publish_payment(events: "Queue[Optional[Event]]") -> Event:
    """Publish a TransactionCreated event."""
    print("Payment: publishing", TRANSACTION_CREATED)
    event = Event(name=TRANSACTION_CREATED, data="TXN123")
    events.put(event)
    return event


def fraud_subscriber(events: "Queue[Optional[Event]]") -> list[str]:
    """Check every created transaction until None arrives; return their data."""
    checked = []
    while (event := events.get()) is not None:
        if event.name == TRANSACTION_CREATED:
            print("Fraud: checking transaction", event.data)
            checked.append(event.data)
    return checked


def discover_fraud_service(environ: Mapping[str, str] | None = None) -> str:
    """Return the fraud service address from the environment, or the default."""
    env = os.environ if environ is None else environ
    return env.get("FRAUD_SERVICE_URL", "") or DEFAULT_FRAUD_URL


def main(argv: list[str] | None = None) -> int:
    """Show each way of decoupling the payment service from its collaborators."""
    parser = argparse.ArgumentParser(prog="finpay-coupling", description=main.__doc__)
    parser.add_argument("--gap", type=float, default=1.0)
    parser.add_argument("--check-time", type=float, default=2.0)
    args = parser.parse_args(argv)

    process_payment(5000, SimpleFraudChecker(), SimpleNotifier())

    for notifier in (TwilioNotifier(), SNSNotifier()):
        print("Payment processed successfully")
        notifier.send("Payment successful notification")

    for channel in (SMSChannel(), EmailChannel()):
        notify(channel, "Payment of ₹1000 successful")

    transactions: Queue[Optional[Transaction]] = Queue(maxsize=5)
    worker = threading.Thread(target=fraud_service, args=(transactions, args.check_time))
    worker.start()
    payment_service(transactions, gap=args.gap)
    transactions.put(None)
    worker.join()

    events: Queue[Optional[Event]] = Queue(maxsize=1)
    subscriber = threading.Thread(target=fraud_subscriber, args=(events,))
    subscriber.start()
    publish_payment(events)
    events.put(None)
    subscriber.join()

    print("Payment Service discovered Fraud at:", discover_fraud_service())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())