[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tsskit"
version = "0.1.0"
description = "Build, send and read ticket signing (TSS) requests for firmware restores"
requires-python = ">=3.10"
dependencies = []
keywords = ["tss", "firmware", "restore", "plist", "ticket", "signing"]
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
    "Topic :: System :: Recovery Tools",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["tsskit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
