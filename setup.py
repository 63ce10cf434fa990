from setuptools import setup, find_packages

setup(
    name="knowledge-base",
    version="1.0.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "requests",
        "pyyaml",
        "numpy",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "knowledge-base=knowledge_base.cli:main",
        ],
    },
    description="Locally cached vector knowledge base with release-feed updates and semantic search.",
)
