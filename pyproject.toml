[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pipekit"
version = "0.1.0"
description = "Pipeline tooling: a step result cache, step dependency graphs, a content-addressed hub store and a hub client"
requires-python = ">=3.11"
keywords = ["pipeline", "automation", "cache", "dag", "content-addressed", "cli"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Utilities",
]
dependencies = [
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[project.scripts]
pipekit = "pipekit.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["pipekit"]

[tool.hatch.build.targets.sdist]
include = ["pipekit", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
warn_redundant_casts = true
