from setuptools import find_packages, setup

setup(
    name="storehub-worker",
    version="0.1.0",
    packages=find_packages(
        include=[
            "storehub_common",
            "storehub_common.*",
            "storehub_persistence",
            "storehub_persistence.*",
            "storehub_storage",
            "storehub_storage.*",
            "storehub_worker",
            "storehub_worker.*",
            "storehub_admin",
            "storehub_admin.*",
        ]
    ),
    install_requires=[
        "requests>=2.31.0",
        "aiosqlite>=0.19.0",
        "click>=8.1.0",
        "beautifulsoup4>=4.12.0",
        "cryptography>=41.0.0",
        "minio>=7.2.0,<8",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-xdist>=3.3.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "storehub-worker=storehub_worker.__main__:main",
            "storehub-admin=storehub_admin.cli:cli",
        ],
    },
    python_requires=">=3.11",
)
