# setup.py
from setuptools import setup, find_packages

setup(
    name="knowledge_compiler",
    version="0.1.0",
    description="Crawls a client website and compiles it into a token-budgeted voice-agent prompt",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={"knowledge_compiler": ["templates/*.j2"]},
    include_package_data=True,
    install_requires=[
        "aiohttp>=3.9",
        "beautifulsoup4>=4.12",
        "click>=8.2",
        "jinja2>=3.1",
        "lxml>=5.0",
        "openai>=1.40",
        "pydantic>=2.5",
        "PyYAML>=6.0",
        "tiktoken>=0.7",
        "tldextract>=5.1",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "knowledge-compiler=knowledge_compiler.cli:cli",
        ],
    },
    python_requires=">=3.11",
)
