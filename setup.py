from setuptools import find_packages, setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="puretelnet",
    version="0.3.0",
    author="puretelnet Developers",
    description="Pure Python telnet/TLS bridge engine for LLM controllers",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["puretelnet", "puretelnet.*"]),
    include_package_data=True,
    install_requires=[],
    extras_require={
        "dev": [
            "pytest >= 7.0",
            "pytest-asyncio >= 0.21",
            "pytest-cov >= 5.0",
            "flake8 >= 7.0",
            "black >= 24.0",
            "isort >= 5.13",
        ],
        "test": [
            "pytest >= 7.0",
            "pytest-asyncio >= 0.21",
            "pytest-cov >= 5.0",
            "flake8 >= 7.0",
            "black >= 24.0",
            "isort >= 5.13",
        ],
    },
    entry_points={
        "console_scripts": [
            "puretelnet=puretelnet:main",
        ],
    },
    # StreamWriter.start_tls
    python_requires=">=3.11",
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
)
