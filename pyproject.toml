[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "siaproto"
version = "0.9.1"
description = "Merkle tree hashing, sector proofs and stream multiplexing for storage contract protocols"
requires-python = ">=3.10"
dependencies = []
keywords = ["merkle", "blake2b", "storage-proof", "multiplexing", "smux", "renter-host"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
    "Topic :: Security :: Cryptography",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["siaproto"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
