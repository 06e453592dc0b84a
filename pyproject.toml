[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mongoproxy"
version = "0.1.0"
description = "Request-processing plugins for a MongoDB proxy: authorization, command filtering, defaults, deduplication and limits"
requires-python = ">=3.10"
dependencies = []
keywords = ["mongodb", "proxy", "authorization", "plugins", "pipeline"]
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
    "Topic :: Database",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["mongoproxy"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
