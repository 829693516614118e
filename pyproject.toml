[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "shardbank"
version = "0.1.0"
description = "Sharded bank ledger with Paxos replication inside clusters and two-phase commit across them"
requires-python = ">=3.10"
keywords = [
    "two-phase-commit",
    "paxos",
    "sharding",
    "distributed-transactions",
    "mongodb",
    "consensus",
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
    "Topic :: System :: Distributed Computing",
    "Topic :: Database",
]
dependencies = [
    "pymongo",
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
shardbank = "shardbank.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["shardbank"]

[tool.hatch.build.targets.sdist]
include = [
    "shardbank",
    "tests",
]

[tool.pytest.ini_options]
testpaths = ["tests"]
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
