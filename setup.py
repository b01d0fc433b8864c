from setuptools import setup, find_packages

setup(
    name="hivelang",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={"hivelang": ["grammar.lark"]},
    install_requires=[
        "lark",
        "pydantic>=2.0",
        "networkx>=3.0",
        "loguru>=0.7",
        "openai",
        "anthropic",
        "opentelemetry-api",
        "opentelemetry-sdk",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "hive=hivelang.cli:main",
        ],
    },
    python_requires=">=3.9",
)
