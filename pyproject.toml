[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mtensor"
version = "2.0.0"
description = "A small strided float32 tensor library with gradients, broadcasting, convolutions and computation-graph export"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = [
    "tensor",
    "autograd",
    "gradient",
    "convolution",
    "deconvolution",
    "broadcasting",
    "computation graph",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Mathematics",
    "Topic :: Scientific/Engineering :: Artificial Intelligence",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["mtensor"]

[tool.hatch.build.targets.sdist]
include = [
    "mtensor",
    "tests",
    "README.md",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
