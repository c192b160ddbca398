from setuptools import setup, find_packages

setup(
    name="checkpoint",
    version="0.1.0",
    packages=find_packages(include=["checkpoint", "checkpoint.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi",
        "pydantic",
        "pydantic-settings",
        "redis>=5.0",
        "starlette",
    ],
    extras_require={
        "test": [
            "httpx",
            "pytest",
            "pytest-asyncio",
        ],
    },
)
