[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hubregistration"
version = "0.1.0"
description = "Hub-side reconcilers for managed cluster registration: CSR approval, leases, add-on discovery and health, cluster sets and RBAC finalizers, run against an in-memory resource store."
requires-python = ">=3.10"
keywords = ["cluster", "registration", "controller", "reconciler", "multicluster", "csr", "lease"]
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
    "cryptography",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["hubregistration"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
