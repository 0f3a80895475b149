[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "snowlobby"
version = "0.1.0"
description = "Lobby server for a multiplayer snowball battle game: packet protocol, player state, accounts and timed game events"
requires-python = ">=3.10"
dependencies = []
keywords = ["game server", "lobby", "multiplayer", "asyncio", "binary protocol"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Games/Entertainment",
    "Framework :: AsyncIO",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
snowlobby = "snowlobby.server:main"

[tool.hatch.build.targets.wheel]
packages = ["snowlobby"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
