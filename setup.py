from setuptools import setup, find_packages

setup(
    name="deployment-orchestrator",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*", "migrations"]),
    install_requires=[
        "fastapi==0.115.6",
        "uvicorn==0.32.1",
        "sqlalchemy==2.0.36",
        "alembic==1.14.0",
        "pydantic[email]==2.10.3",
        "pydantic-settings==2.6.1",
        "python-dotenv==1.0.1",
        "kubernetes==31.0.0",
        "requests==2.32.3",
        "tenacity==9.0.0",
        "python-jose[cryptography]==3.3.0",
        "passlib[bcrypt]==1.7.4",
        "bcrypt==4.0.1",
        "cryptography==44.0.0",
    ],
    extras_require={
        "test": [
            "pytest==8.3.4",
            "pytest-asyncio==0.24.0",
            "httpx==0.27.2",
        ],
    },
    python_requires=">=3.11",
)
