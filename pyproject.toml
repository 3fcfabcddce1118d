[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hevtask"
version = "5.10.2"
description = "Cooperative task system with a priority scheduler, I/O reactor, mutexes, conditions and channels"
requires-python = ">=3.10"
dependencies = []
keywords = ["coroutine", "task", "scheduler", "cooperative", "reactor", "channel", "epoll", "kqueue"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
hevtask-demo = "hevtask.demos:main"

[tool.hatch.build.targets.wheel]
packages = ["hevtask"]

[tool.pytest.ini_options]
addopts = "-ra"
