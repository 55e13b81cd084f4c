from setuptools import setup, find_packages

setup(
    name="mimap",
    version="1.0.0",
    description="Discovery and federation graph crawler for Misskey instances",
    packages=find_packages(exclude=["tests", "tests.*"]),
    license="GPLv3",
    python_requires=">=3.8",
    install_requires=[
        "aiohttp[speedups]",
        "tqdm",
        "requests",
        "colorlog",
        "langdetect",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "mimap = mimap.cli:main",
        ],
    },
)
