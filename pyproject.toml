[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "metaraid"
version = "0.1.0"
description = "Crawl Spotify artist catalogues into Redis and export the collected track metadata to SQLite."
requires-python = ">=3.11"
keywords = ["spotify", "scraper", "crawler", "metadata", "redis", "sqlite", "music"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: Indexing/Search",
    "Topic :: Multimedia :: Sound/Audio",
]
dependencies = [
    "pyyaml>=6.0",
    "redis>=5.0",
    "msgpack>=1.0",
    "requests>=2.31",
]

[project.optional-dependencies]
test = [
    "pytest>=8.0",
]

[project.scripts]
metaraid-config = "metaraid.config:main"
metaraid-scraper = "metaraid.scraper_cli:main"
metaraid-export = "metaraid.export:main"

[tool.hatch.build.targets.wheel]
packages = ["metaraid"]

[tool.hatch.build.targets.sdist]
include = ["metaraid", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
ignore_missing_imports = true
