[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ftlstream"
version = "0.9.14"
description = "FTL ingest client pieces: H.264 header parsing, Annex B and Ogg/Opus file readers, and the FTL control protocol"
requires-python = ">=3.10"
dependencies = []
keywords = ["ftl", "streaming", "h264", "opus", "ogg", "ingest", "nal unit", "exp-golomb"]
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
    "Topic :: Multimedia :: Video",
    "Topic :: Multimedia :: Sound/Audio",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["ftlstream"]

[tool.hatch.build.targets.sdist]
include = ["ftlstream", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
