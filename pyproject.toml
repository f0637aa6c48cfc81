[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sherpa"
version = "0.1.0"
description = "Job group scaling with scaling state backends, cluster leader election and WSGI endpoint handlers"
requires-python = ">=3.10"
keywords = ["autoscaling", "scaling", "cluster", "leader-election", "wsgi"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Clustering",
]
dependencies = [
    "werkzeug",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["sherpa"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
