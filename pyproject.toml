[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "relaymsg"
version = "1.0.3"
description = "Building blocks for an end-to-end encrypted messenger: crypto, relay storage, login limiting, media framing and chat text helpers"
requires-python = ">=3.10"
keywords = [
    "messaging",
    "chat",
    "end-to-end encryption",
    "x25519",
    "ed25519",
    "xchacha20-poly1305",
    "sqlite",
    "audio",
]
classifiers = [
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Chat",
    "Topic :: Security :: Cryptography",
    "Topic :: Multimedia :: Sound/Audio",
]
dependencies = [
    "cryptography",
    "pynacl",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[tool.hatch.build.targets.wheel]
packages = ["relaymsg"]

[tool.hatch.build.targets.sdist]
include = [
    "relaymsg",
    "tests",
    "pyproject.toml",
]

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
