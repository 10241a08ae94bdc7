from setuptools import find_packages, setup

setup(
    name="subrepo-mirror",
    version="0.1.0",
    packages=find_packages(
        include=[
            "mirror_common",
            "mirror_common.*",
            "mirror_persistence",
            "mirror_persistence.*",
            "mirror_controller",
            "mirror_controller.*",
            "mirror_server",
            "mirror_server.*",
            "mirror_client",
            "mirror_client.*",
            "mirror_admin",
            "mirror_admin.*",
        ]
    ),
    install_requires=[
        "requests>=2.31.0",
        "fastapi>=0.104.0",
        "uvicorn>=0.24.0",
        "aiosqlite>=0.19.0",
        "click>=8.1.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-xdist>=3.3.0",
            "httpx>=0.25.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "mirror=mirror_client.cli:main",
            "mirror-controller=mirror_controller.__main__:main",
            "mirror-server=mirror_server.__main__:main",
            "mirror-admin=mirror_admin.cli:cli",
        ],
    },
    python_requires=">=3.11",
)
