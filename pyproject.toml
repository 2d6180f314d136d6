[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "wivrn"
version = "0.1.0"
description = "Wire protocol, transports, clock sync, pose history and video sharding for streaming VR to a headset"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = ["vr", "streaming", "openxr", "serialization", "video", "protocol", "h264", "h265"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Video",
    "Topic :: System :: Networking",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["wivrn"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
