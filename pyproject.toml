[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "phigrank"
version = "1.2.0"
description = "Phigros song lookup, RKS and push-accuracy calculation, cloud-save fetching, SQLite player archives and account bindings"
requires-python = ">=3.10"
dependencies = []
keywords = ["phigros", "rks", "rhythm-game", "leaderboard", "cloud-save"]
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
    "Topic :: Games/Entertainment",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["phigrank"]

[tool.pytest.ini_options]
addopts = "-ra"
