[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rfidvault"
version = "0.1.0"
description = "RFID card registry with an access log, an RC522 reader driver and a small JSON web API"
requires-python = ">=3.10"
dependencies = []
keywords = ["rfid", "rc522", "access-control", "card-reader", "wsgi", "key-value"]
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
    "Topic :: Database",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Application",
    "Topic :: Security",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
rfidvault = "rfidvault.controller:main"

[tool.hatch.build.targets.wheel]
packages = ["rfidvault"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
