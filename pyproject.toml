[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "minikernel"
version = "0.1.0"
description = "File system, buffer cache, redo log, pipes and file-descriptor layer of a small Unix-like teaching kernel, in pure Python"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "filesystem",
    "inode",
    "buffer-cache",
    "write-ahead-log",
    "disk-image",
    "kernel",
    "teaching",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Education",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
    "Topic :: Education",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["minikernel"]

[tool.hatch.build.targets.sdist]
include = ["minikernel", "tests", "README.md"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 88
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
