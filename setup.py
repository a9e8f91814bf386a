"""
Setup script for question-engine.

question-engine is the adaptive question-delivery core of the practice
platform. It decides which practice question a learner sees next:

1. Session and persisted history tracking (no recent repeats)
2. Tiered question resolution (cache -> curated bank -> broadened cache)
3. Adaptive difficulty from rolling accuracy
4. Resilient calls to the generative text/vision service
5. Quality and usage feedback on cached questions
"""

from setuptools import find_packages, setup

setup(
    name="question-engine",
    version="1.0.0",
    description="Adaptive question delivery core: history, resolution, difficulty and generation",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    author="Practice Platform",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["config"],
    python_requires=">=3.10",
    install_requires=[
        # Database
        "sqlalchemy[asyncio]>=2.0.0,<2.1",
        "psycopg2-binary>=2.9.0",
        "asyncpg>=0.29.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # HTTP
        "httpx>=0.25.0",
        # LLM output repair
        "json-repair>=0.25.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: Education",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="learning adaptive-difficulty question-bank education generative-ai",
)
