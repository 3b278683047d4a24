[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "afpclient"
version = "0.8.2"
description = "Apple Filing Protocol client building blocks: DSI session, request builders, reply parsers and volume-level file operations"
requires-python = ">=3.10"
dependencies = []
keywords = ["afp", "dsi", "apple filing protocol", "netatalk", "file sharing", "network filesystem"]
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
    "Topic :: System :: Filesystems",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["afpclient"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
