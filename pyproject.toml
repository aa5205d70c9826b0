[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "etchdns"
version = "0.1.0"
description = "Asyncio building blocks for a caching DNS proxy: resolver statistics, rate limiting, query logging, a query hook and upstream probing"
requires-python = ">=3.10"
dependencies = []
keywords = ["dns", "proxy", "statistics", "rate-limiting", "query-logging", "asyncio"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: Internet :: Name Service (DNS)",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["etchdns"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
