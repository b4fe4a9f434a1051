[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ext2sim"
version = "0.1.0"
description = "A simulated EXT2 file system kernel with an interactive shell over disk images"
requires-python = ">=3.10"
dependencies = []
keywords = ["ext2", "filesystem", "simulator", "disk image", "shell", "inode"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
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
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
ext2sim = "ext2sim.shell:main"

[tool.hatch.build.targets.wheel]
packages = ["ext2sim"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
