[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cdkdac"
version = "0.1.0"
description = "Core of a data availability committee node: sequence signing, off-chain data serving and L1 batch synchronization"
requires-python = ">=3.10"
keywords = ["data-availability", "validium", "committee", "rollup", "ethereum", "synchronizer", "secp256k1"]
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
]
dependencies = [
    "pycryptodome",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["cdkdac"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
