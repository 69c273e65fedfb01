[build-system]
requires = ["setuptools>=64"]
build-backend = "setuptools.build_meta"

[project]
name = "swarmtrack"
version = "0.1.0"
description = "BitTorrent tracker announce clients (HTTP and UDP) and piece picking algorithms"
requires-python = ">=3.10"
dependencies = []
keywords = ["bittorrent", "tracker", "torrent", "piece-picker", "p2p"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: File Sharing",
    "Topic :: Internet",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.setuptools.packages.find]
include = ["swarmtrack*"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
