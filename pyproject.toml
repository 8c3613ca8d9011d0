[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "finpay"
version = "0.1.0"
description = "A small payments toolkit: wallet rules, walkthroughs, and WSGI services for sidecars, events, a service mesh, a strangler fig, a circuit breaker and CQRS."
requires-python = ">=3.10"
dependencies = [
    "werkzeug",
    "httpx",
]
keywords = [
    "payments",
    "wallet",
    "microservices",
    "wsgi",
    "circuit-breaker",
    "cqrs",
    "service-mesh",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Office/Business :: Financial",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Application",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
finpay-wallet = "finpay.wallet:main"
finpay-tasks = "finpay.tasks:main"
finpay-scaling = "finpay.scaling:main"
finpay-coupling = "finpay.coupling:main"
finpay-services = "finpay.services:main"
finpay-delivery = "finpay.delivery:main"
finpay-cqrs = "finpay.cqrs:main"
finpay-sidecar = "finpay.sidecar:main"
finpay-events = "finpay.events:main"
finpay-mesh = "finpay.mesh:main"
finpay-strangler = "finpay.strangler:main"
finpay-breaker = "finpay.breaker:main"

[tool.hatch.build.targets.wheel]
packages = ["finpay"]

[tool.hatch.build.targets.sdist]
include = ["finpay", "tests", "pyproject.toml", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
