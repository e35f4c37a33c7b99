from setuptools import setup, find_packages


setup(
    name="cupx",
    version="0.1",
    packages=find_packages(include=["cupx", "cupx.*"]),
    description="Read and write SeeYou CUPX files (pictures ZIP + POINTS.CUP ZIP) without loading them into memory.",
    python_requires=">=3.8",
    install_requires=[],
    extras_require={
        "test": ["pytest>=7"],
    },
    entry_points={
        "console_scripts": [
            "cupx=cupx.cli:main",
        ]
    },
)
