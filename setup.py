"""
Setup script for the EduSocial backend core
"""
from setuptools import setup, find_packages

setup(
    name="edusocial",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.10,<3.14",
    install_requires=[
        "fastapi>=0.100",
        "uvicorn[standard]",
        "sqlalchemy>=2.0",
        "psycopg2-binary",
        "alembic",
        "redis>=4.2",
        "stripe>=8.0",
        "httpx",
        "apscheduler>=3.10,<4",
        "python-jose[cryptography]",
        "pydantic>=2.0",
        "python-dotenv",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
)
