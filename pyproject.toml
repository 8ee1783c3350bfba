[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "butane_oracles"
version = "0.25.1"
description = "Plutus price feed encoding, GEMA smoothing, raft leader election and payload publishing for oracle nodes"
requires-python = ">=3.11"
keywords = ["oracle", "price-feed", "plutus", "cbor", "raft", "gema"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: Office/Business :: Financial",
]
dependencies = [
    "httpx",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
    "respx",
]

[tool.hatch.build.targets.wheel]
packages = ["butane_oracles"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
