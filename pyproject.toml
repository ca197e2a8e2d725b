[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kepler"
version = "0.1.0"
description = "Cgroup filesystem readers, container resolution and a small HTTP metrics exporter for container resource statistics"
requires-python = ">=3.10"
dependencies = []
keywords = ["cgroup", "containers", "kubernetes", "metrics", "exporter", "ebpf"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: No Input/Output (Daemon)",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
kepler = "kepler.exporter:main"

[tool.hatch.build.targets.wheel]
packages = ["kepler"]

[tool.pytest.ini_options]
addopts = "-ra"
