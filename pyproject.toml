[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kindkit"
version = "0.16.0"
description = "Helpers for tools that manage local Kubernetes clusters built from container nodes: errors, command execution, filesystem, node and image utilities"
requires-python = ">=3.11"
dependencies = []
keywords = ["kubernetes", "containers", "docker", "cluster", "nodes", "images"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Clustering",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["kindkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"
