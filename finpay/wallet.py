"""Wallet basics: balances, fees, accounts, loans and users."""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Protocol, runtime_checkable

MANUAL_REVIEW_LIMIT = 1000.0
FEE_RATE = 0.01
LOW_BALANCE_THRESHOLD = 100.0
PREMIUM_THRESHOLD = 500.0
MAX_FAILED_LOGINS = 3


class WalletError(Exception):
    """Base class for wallet failures."""


class InsufficientFundsError(WalletError):
    """The balance does not cover the requested amount."""

    def __init__(self, message: str = "insufficient funds") -> None:
        super().__init__(message)


class InvalidAmountError(WalletError, ValueError):
    """The amount is zero or negative."""

    def __init__(self, message: str = "amount must be > 0") -> None:
        super().__init__(message)


class ManualReviewError(WalletError):
    """The amount is too large to authorize automatically."""

    def __init__(self, message: str = "requires manual review") -> None:
        super().__init__(message)


class RepaymentError(WalletError):
    """A repayment larger than the outstanding loan."""

    def __init__(self, message: str = "Repayment exceeds loan amount") -> None:
        super().__init__(message)


def _fmt(value: float) -> str:
    """Render a number the short way: whole floats without a fraction."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def debit(balance: float, amount: float) -> float:
    """Return the balance after taking out amount."""
    if amount > balance:
        raise InsufficientFundsError()
    return balance - amount


def validate_amount(amount: float) -> None:
    """Raise InvalidAmountError unless amount is positive."""
    if amount <= 0:
        raise InvalidAmountError()


def authorize_and_debit(balance: float, amount: float) -> float:
    """Validate, check the review limit, then debit."""
    validate_amount(amount)
    if amount > MANUAL_REVIEW_LIMIT:
        raise ManualReviewError()
    return debit(balance, amount)


def calc_fee(amount: float) -> float:
    """Return the one-percent fee on a positive amount."""
    validate_amount(amount)
    return amount * FEE_RATE


def deduct_fee(balance: float, fee: float) -> float:
    """Return the balance with a flat fee taken off."""
    return balance - fee


def low_balance_warning(balance: float) -> str | None:
    """Return a top-up warning when the balance is low, else None."""
    if balance < LOW_BALANCE_THRESHOLD:
        return "Low balance! Please top up your wallet."
    return None


def login_message(failed_logins: int) -> str:
    """Return the outcome of a login given the failed attempts so far."""
    if failed_logins > MAX_FAILED_LOGINS:
        return "Account locked due to too many failed logins."
    return "Login successful."


def membership_message(tier: str) -> str:
    """Return the cashback message for a membership tier."""
    if tier == "Gold":
        return "Gold Member: 5% cashback applied."
    if tier == "Silver":
        return "Silver Member: 2% cashback applied."
    return "Standard Member: Upgrade for more rewards."


def premium_offer_message(balance: float) -> str:
    """Return whether the balance unlocks premium offers."""
    if balance > PREMIUM_THRESHOLD:
        return "You are eligible for premium offers!"
    return "Keep using your wallet to unlock premium offers."


def cashback_rewards(days: int = 5) -> list[str]:
    """Return one cashback line per day."""
    return [f"Day {day} : $2 credited" for day in range(1, days + 1)]


def transaction_history(transactions: Iterable[float]) -> list[str]:
    """Return numbered lines for each transaction."""
    return [f"Txn {n} : {_fmt(tx)}" for n, tx in enumerate(transactions, start=1)]


def process_payment(amount: float) -> str:
    """Return the message for processing a payment."""
    return f"Processing payment of {_fmt(amount)}"


@runtime_checkable
class BalanceChecker(Protocol):
    """Anything that can describe its balance."""

    def balance_report(self) -> str:
        ...


def report_balance(checker: BalanceChecker) -> str:
    """Return the balance report of any balance checker."""
    return checker.balance_report()


@dataclass
class Account:
    """A wallet account."""

    number: str
    balance: float = 0.0
    owner: str = ""

    def top_up(self, amount: float) -> float:
        """Add money and return the new balance."""
        self.balance += amount
        return self.balance

    def debit(self, amount: float) -> float:
        """Take money out and return the new balance."""
        self.balance = debit(self.balance, amount)
        return self.balance

    def freeze(self) -> None:
        """Zero the balance."""
        self.balance = 0.0

    def balance_report(self) -> str:
        return f"Account {self.number} has balance: {_fmt(self.balance)}"


@dataclass
class Loan:
    """A loan with its outstanding amount."""

    loan_id: str
    borrower: str = ""
    amount: float = 0.0

    def disburse(self, amount: float) -> float:
        """Add to the loan and return the total."""
        self.amount += amount
        return self.amount

    def repay(self, amount: float) -> float:
        """Pay down the loan and return what remains."""
        if amount > self.amount:
            raise RepaymentError()
        self.amount -= amount
        return self.amount

    def status(self) -> list[str]:
        """Return the status lines of the loan."""
        return [
            f"Loan ID: {self.loan_id}",
            f"Borrower: {self.borrower}",
            f"Remaining Loan Amount: {_fmt(self.amount)}",
        ]

    def balance_report(self) -> str:
        return f"Loan {self.loan_id} outstanding amount: {_fmt(self.amount)}"


@dataclass(frozen=True)
class User:
    """A customer."""

    id: str
    name: str

    def greet(self) -> str:
        return f"Welcome, {self.name}"


def main(argv: list[str] | None = None) -> int:
    """Print a short tour of a wallet."""
    parser = argparse.ArgumentParser(prog="finpay-wallet", description=main.__doc__)
    parser.add_argument("--user", default="Asha")
    parser.add_argument("--balance", type=float, default=250.50)
    parser.add_argument("--tier", default="Gold")
    parser.add_argument("--failed-logins", type=int, default=2)
    args = parser.parse_args(argv)

    print("Welcome to FinPay Wallet!")
    print("User:", args.user)
    print("Date:", datetime.now())
    print("Wallet Balance: $", _fmt(args.balance))

    warning = low_balance_warning(args.balance)
    if warning:
        print(warning)
    print(login_message(args.failed_logins))
    print(membership_message(args.tier))
    print(premium_offer_message(args.balance))

    print("Recent Transactions:")
    for line in transaction_history([50.0, -20.0, -30.0]):
        print(line)
    print("Daily Cashback Rewards:")
    for line in cashback_rewards():
        print(line)

    for amount in (200.0, 1500.0):
        try:
            new_balance = authorize_and_debit(args.balance, amount)
        except WalletError as err:
            print("Transaction failed:", err)
        else:
            print("Transaction successful! New balance:", _fmt(new_balance))

    account = Account(number="ACC123", owner=args.user, balance=500.0)
    loan = Loan(loan_id="LN200", borrower="Ravi", amount=5000.0)
    for checker in (account, loan):
        print(report_balance(checker))

    customer = User(id="U1001", name="Ravi")
    print(customer.greet())
    print(process_payment(250.0))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())