"""
Setup script for the Docketwise Sync Agent
"""
from setuptools import setup, find_packages

setup(
    name="docketwise-sync",
    version="1.0.0",
    description="Docketwise matter sync, deadline reminders and matter notifications",
    author="Your Firm",
    python_requires=">=3.10",
    py_modules=[
        "config",
        "auth",
        "api_client",
        "models",
        "matter_mapping",
        "cache",
        "reference_sync",
        "sync",
        "matter_details",
        "matters_realtime",
        "notifications",
        "dispatcher",
        "publisher",
        "email_queue",
        "emails",
        "deadlines",
        "status_classifier",
        "dashboard_stats",
        "celery_app",
        "tasks",
        "sync_routes",
        "agent",
    ],
    packages=find_packages(include=["db", "db.*"]),
    install_requires=[
        "httpx>=0.25.0",
        "python-dateutil>=2.8.2",
        "jinja2>=3.1.2",
        "click>=8.1.0",
        "rich>=13.0.0",
        "python-dotenv>=1.0.0",
        "psycopg2-binary>=2.9.9",
        "redis>=5.0.0",
        "celery>=5.3.0",
        "fastapi>=0.110.0",
        "pydantic>=2.0.0",
        "sse-starlette>=1.8.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "docketwise-sync=agent:main",
        ],
    },
)
