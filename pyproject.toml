[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "burstmw"
version = "0.1.0"
description = "Asyncio communication middleware for bursts of workers: direct messages and collectives over pluggable local and remote proxies"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "distributed",
    "collectives",
    "broadcast",
    "scatter",
    "gather",
    "all-to-all",
    "reduce",
    "asyncio",
    "middleware",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Framework :: AsyncIO",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest", "pytest-asyncio"]

[tool.hatch.build.targets.wheel]
packages = ["burstmw"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
