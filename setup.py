"""setuptools setup for TrackTime.

Install for development:
    pip install -e ".[test]"
"""

from setuptools import setup, find_namespace_packages

setup(
    name="TrackTime",
    version="0.1.0",
    description="Server-authoritative time tracking timer with a Qt client mirror",
    packages=find_namespace_packages(include=["tracktime", "tracktime.*"]),
    python_requires=">=3.10",
    install_requires=[
        "PyQt6",
        "SQLAlchemy>=2.0",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": ["tracktime=tracktime.__main__:main"],
    },
)
