[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "asmux"
version = "0.3.4"
description = "Asynchronous smux stream multiplexing over a single asyncio connection"
requires-python = ">=3.10"
dependencies = []
keywords = ["smux", "multiplexing", "asyncio", "streams", "networking"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Framework :: AsyncIO",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest", "pytest-asyncio"]

[project.scripts]
asmux-echo = "asmux.echo:main"

[tool.hatch.build.targets.wheel]
packages = ["asmux"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
