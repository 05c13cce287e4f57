#!/usr/bin/env python
"""Setup configuration for EHR Onboarding."""

from setuptools import find_packages, setup

setup(
    name="ehr-onboarding",
    version="0.1.0",
    description="FHIR connection validation pipeline for hospital EHR onboarding",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.104.1",
        "uvicorn[standard]>=0.24.0",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.0.0",
        "sqlalchemy>=2.0.23",
        "cryptography>=41.0.0",
        "httpx>=0.25.0",
        "structlog>=23.2.0",
        "prometheus-client>=0.19.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "ehr-onboarding=ehr_onboarding.main:main",
        ],
    },
)
