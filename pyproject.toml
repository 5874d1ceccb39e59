[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "corokit"
version = "0.11.1"
description = "Awaitable coroutine primitives with their own driver: events, mutexes, ring buffers, an I/O scheduler, task containers, when_any, and small TCP and DNS helpers."
requires-python = ">=3.10"
dependencies = []
keywords = ["coroutines", "await", "mutex", "event", "ring-buffer", "scheduler", "networking"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries",
]

[project.optional-dependencies]
test = ["pytest", "pytest-asyncio"]

[tool.hatch.build.targets.wheel]
packages = ["corokit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
