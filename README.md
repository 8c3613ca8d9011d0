# finpay

A small payments toolkit. It contains:

- **Wallet rules** (`finpay.wallet`). Debits, fees, authorisation limits,
  accounts, loans and users as plain Python objects. They raise exceptions
  when an operation is not allowed.
- **Walkthroughs** (`finpay.tasks`, `finpay.scaling`, `finpay.coupling`).
  Concurrent payment steps, shard routing, a read-through cache, and
  swappable fraud checkers and notifiers.
- **Services**. Small WSGI applications built on Werkzeug that show common
  service patterns for payments: a logging sidecar, event-driven ledger
  posting, a service-mesh proxy with retries, a strangler-fig router, a
  circuit breaker with fallback decisions, a CQRS ledger with balance
  queries, and a feature-flagged payment endpoint.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Wallet rules

```python
from finpay.wallet import (
    authorize_and_debit,
    calc_fee,
    InvalidAmountError,
    ManualReviewError,
)

calc_fee(100.0)                  # 1.0, which is 1 % of the amount
authorize_and_debit(500, 200)    # 300, the new balance

try:
    authorize_and_debit(2000, 1500)
except ManualReviewError:
    ...                          # amounts over 1000 need a manual review

try:
    calc_fee(-50.0)
except InvalidAmountError:
    ...                          # amounts must be greater than zero
```

`debit` raises `InsufficientFundsError` when the amount is larger than the
balance, and `Loan.repay` raises `RepaymentError` when the repayment is larger
than the loan. Every wallet error derives from `WalletError`.

`Account` and `Loan` both provide `balance_report()`. `report_balance(checker)`
accepts either of them, or any other object that follows the `BalanceChecker`
protocol.

## Scaling helpers

```python
from finpay.scaling import shard_for_user, add_balance

shard_for_user("Alice")   # 1: names whose first letter is up to "M" go to shard 1
shard_for_user("Ravi")    # 2
add_balance("Ravi", 5000) # 6000, the same result on every call
```

`ShardRouter` looks up balances in the shard that a user belongs to.
`BalanceCache` fetches a balance on the first lookup for a user and counts
hits and misses after that. `StatefulBalance` keeps a running total between
calls.

## Circuit breaker

```python
from finpay.breaker import CircuitBreaker, fallback

breaker = CircuitBreaker()
if breaker.allow():
    ...                          # call the risk service
    breaker.report(None)         # or breaker.report(error) on failure
else:
    decision = fallback(120.0)   # not approved: "hold_high_amount"
```

The breaker opens after three failures in a row. It stays open for ten
seconds, then lets one probe through. If the probe succeeds, the breaker
closes again. If it fails, the breaker opens again.

## Services

Each service module has a factory that returns a WSGI application, such as
`finpay.cqrs.create_app`, `finpay.delivery.create_app` and
`finpay.breaker.create_payments_app`. You can mount these in any WSGI server.
The commands below start them on Werkzeug's development server and listen on
every interface. Every command accepts `--port` to override the default port.

| Command | What it runs | Default port |
| --- | --- | --- |
| `finpay-services SERVICE` | one of the small example services (see below) | depends on the service |
| `finpay-delivery` | `POST /pay`, `/healthz`, `/readyz` | 8080 |
| `finpay-cqrs` | `POST /command/pay`, `GET /query/balance?user=` | 9000 |
| `finpay-sidecar sidecar` | `POST /logs`, which enriches audit events and prints them | 9000 |
| `finpay-sidecar payments` | `POST /authorize`, which sends audit events to the sidecar | 8080 |
| `finpay-events ledger` | `POST /events`, which turns `payment_authorized` events into ledger entries | 9001 |
| `finpay-events payments` | `POST /authorize`, which emits events to the ledger | 9000 |
| `finpay-mesh ledger` | `POST /ledger/debit`, sometimes slow or failing | 7002 |
| `finpay-mesh meshproxy` | a proxy that adds trace and identity headers and retries | 15001 |
| `finpay-mesh payments` | `POST /pay` through the mesh proxy | 9000 |
| `finpay-strangler` | routes `/api/users/...` to the users service and everything else to the legacy one | 8080 |
| `finpay-breaker risk` | `/score`, sometimes slow or down | 7002 |
| `finpay-breaker payments` | `POST /pay` through the circuit breaker | 9000 |

`finpay-services` takes one of these service names: `monolith`, `orders`,
`users`, `json-users`, `json-payments`, `slow-payments`, `payments`, `fraud`,
`flaky-fraud`, `fraud-payments`, `retry-payments`, `load-balanced`,
`payment-api`, `gateway-users`, `gateway-payments`, `legacy` and `usersvc`.

Other options: `finpay-sidecar --sidecar-url`, `finpay-events --ledger-url`,
`finpay-mesh --upstream-url` and `--mesh-url`, `finpay-strangler --users-url`
and `--legacy-url`, and `finpay-breaker --risk-url`.

`finpay-delivery` reads the `FEATURE_SPLIT_BILL` environment variable. The
split-bill feature is on only when the variable is exactly `true`.

## Walkthroughs

These commands print short walkthroughs to the terminal:

```
finpay-wallet
finpay-tasks
finpay-scaling
finpay-coupling
```

`finpay-tasks` runs the debit, logging and notification steps at the same time
and prints each result as it finishes. Use `--scale` to shorten or lengthen
the delays. `finpay-coupling` shows:

- payment processing with swappable fraud checkers and notifiers,
- a transaction queue,
- an event publisher and subscriber,
- service discovery through the `FRAUD_SERVICE_URL` environment variable.

## What it does not do

- Nothing is stored. The CQRS ledger and balances live in memory, and the
  sidecar and the event ledger print their records to standard output.
- There is no message broker. Events are posted over HTTP in a background
  thread, with a one-second timeout and no retries.
- There is no API gateway. `gateway-users` and `gateway-payments` are mock
  services that only echo the path and request id.
- The servers are Werkzeug's development server. They are not meant for
  production traffic.