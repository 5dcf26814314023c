from setuptools import setup, find_packages

setup(
    name="hivelang",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["hive"],
    package_data={"hivelang": ["*.lark"]},
    install_requires=[
        "lark",
        "pydantic>=2.0",
        "loguru>=0.7",
        "openai",
        "anthropic",
        "google-generativeai",
        "mistralai>=1.0",
        "cohere>=5.0",
        "requests",
        "opentelemetry-api",
        "opentelemetry-sdk",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "hive=hive:main",
        ],
    },
    python_requires=">=3.10",
)
