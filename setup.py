"""
Setup file.
"""

import os

from setuptools import find_packages, setup

KEYWORDS = "embedded firmware scp build orchestrator toolchain cmake-format clang-format"
HERE = os.path.dirname(os.path.abspath(__file__))


def read_version() -> str:
    with open(os.path.join(HERE, "src", "scpbuild", "__init__.py"), encoding="utf-8") as f:
        for line in f:
            if line.startswith("__version__"):
                return line.split("=")[1].strip().strip('"')
    raise RuntimeError("Unable to find __version__")


if __name__ == "__main__":
    setup(
        name="scpbuild",
        version=read_version(),
        description="Firmware composition build orchestrator",
        keywords=KEYWORDS,
        python_requires=">=3.8",
        package_dir={"": "src"},
        packages=find_packages("src"),
        install_requires=["psutil"],
        extras_require={"test": ["pytest"]},
        entry_points={"console_scripts": ["scpbuild=scpbuild.cli:main"]},
        include_package_data=True)
