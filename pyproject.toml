[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cattlewebhook"
version = "0.1.0"
description = "Admission validators and a mutator for cluster management resources: global roles, global role bindings, node drivers, pod security admission templates, project role template bindings and fleet workspaces"
requires-python = ">=3.10"
dependencies = []
keywords = ["admission", "webhook", "rbac", "validation", "pod-security", "kubernetes"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration :: Authentication/Directory",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["cattlewebhook"]

[tool.pytest.ini_options]
addopts = "-ra"
