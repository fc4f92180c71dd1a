[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "skyctl"
version = "0.1.0"
description = "The sky command: a front end for Starlark tools, a plugin manager with marketplaces, and JSON builtin definition providers."
requires-python = ">=3.10"
keywords = ["starlark", "bazel", "buck2", "plugins", "marketplace", "build-tools"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Build Tools",
]
dependencies = [
    "portalocker",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
sky = "skyctl.sky:main"

[tool.hatch.build.targets.wheel]
packages = ["skyctl"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
