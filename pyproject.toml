[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "txscope"
version = "0.1.0"
description = "Carry an SQLAlchemy engine or connection and its transaction through a context, with success callbacks and automatic commit or rollback."
requires-python = ">=3.10"
dependencies = [
    "sqlalchemy",
]
keywords = [
    "transaction",
    "context",
    "sqlalchemy",
    "database",
    "commit",
    "rollback",
    "callbacks",
]
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
    "Topic :: Database",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
txscope-basic-demo = "txscope.basic_demo:main"
txscope-events-demo = "txscope.events_demo:main"
txscope-advanced-demo = "txscope.advanced_demo:main"

[tool.hatch.build.targets.wheel]
packages = ["txscope"]

[tool.hatch.build.targets.sdist]
include = [
    "txscope",
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
