[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "chainstore"
version = "0.1.0"
description = "Configuration and storage backends for signed build payloads, signatures and certificates"
requires-python = ">=3.10"
dependencies = []
keywords = ["supply-chain", "signing", "provenance", "attestation", "storage"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security :: Cryptography",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["chainstore"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
