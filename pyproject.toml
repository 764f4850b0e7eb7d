[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nachosim"
version = "0.1.0"
description = "Simulated MIPS machine: CPU, address translation, interrupts, timer, disk and network devices"
requires-python = ">=3.10"
dependencies = []
keywords = ["emulator", "mips", "simulator", "operating-systems", "education"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Education",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
    "Topic :: Education",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["nachosim"]

[tool.pytest.ini_options]
addopts = "-ra"
