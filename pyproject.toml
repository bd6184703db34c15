[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sopskit"
version = "0.1.0"
description = "Encrypted document trees with per-value encryption and MACs, Shamir key splitting, GnuPG-backed PGP master keys and Vault publishing"
requires-python = ">=3.10"
keywords = [
    "secrets",
    "encryption",
    "shamir",
    "secret-sharing",
    "pgp",
    "gnupg",
    "vault",
    "mac",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security :: Cryptography",
]
dependencies = [
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[tool.hatch.build.targets.wheel]
packages = ["sopskit"]

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
