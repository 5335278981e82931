from setuptools import setup, find_packages

setup(
    name="pgmirror",
    version="1.0.0",
    description="Incremental one-way mirroring of Postgres tables",
    packages=find_packages(include=["pgmirror", "pgmirror.*"]),
    python_requires=">=3.10",
    install_requires=[
        "sqlalchemy[asyncio]>=2.0.0",
        "asyncpg>=0.27.0",
        "pydantic>=2.0.0",
        "python-dotenv>=0.19.0",
        "prometheus-client>=0.17.0",  # Metrics exposition
        "fastapi>=0.100.0",           # Metrics HTTP endpoint
        "uvicorn>=0.23.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "httpx>=0.24.0",  # For FastAPI TestClient
        ]
    },
    entry_points={
        "console_scripts": [
            "pgmirror=pgmirror.main:main",
        ]
    }
)
