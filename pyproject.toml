[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "camstages"
version = "0.1.0"
description = "Post-processing stages for YUV420 camera frames: negation, motion detection and handling of neural-network results."
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = ["camera", "yuv420", "motion-detection", "post-processing", "piecewise-linear", "image"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Graphics :: Capture :: Digital Camera",
    "Topic :: Scientific/Engineering :: Image Processing",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["camstages"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
