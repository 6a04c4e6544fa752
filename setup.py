from setuptools import find_packages, setup

setup(
    name="restic-browser",
    version="0.1.0",
    description="Browse restic backup snapshots as a read-only filesystem tree",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "cachetools>=5.0.0",
    ],
    entry_points={
        "console_scripts": [
            "restic-browser=restic_browser.__main__:main",
        ],
    },
    python_requires=">=3.10",
    extras_require={
        "dev": [
            "pytest",
            "build",
            "twine",
        ],
        "test": [
            "pytest",
        ],
    },
)
