[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "smartcoaster"
version = "0.1.2"
description = "Drink-monitoring coaster core: weighing, settings storage, activity logs, RTC and LED animation"
requires-python = ">=3.10"
dependencies = []
keywords = ["coaster", "hydration", "load-cell", "hx711", "led", "settings", "flash-storage"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Framework :: AsyncIO",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Home Automation",
]

[project.optional-dependencies]
test = ["pytest", "pytest-asyncio"]

[tool.hatch.build.targets.wheel]
packages = ["smartcoaster"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
