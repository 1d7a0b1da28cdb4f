[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "netcheckop"
version = "0.1.0"
description = "Pod network connectivity checks with outage tracking, object merging for apply, and a small check-target HTTP server"
requires-python = ">=3.10"
dependencies = []
keywords = ["network", "connectivity", "monitoring", "kubernetes", "outage", "tcp"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking :: Monitoring",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest", "pyyaml"]

[project.scripts]
netcheckop-check-target = "netcheckop.checktarget:main"

[tool.hatch.build.targets.wheel]
packages = ["netcheckop"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
