from setuptools import setup, find_packages


setup(
    name="sigbackup",
    version="0.1",
    packages=find_packages(include=["sigbackup", "sigbackup.*"]),
    package_data={"sigbackup": ["Backups.proto"]},
    description="Decrypt Signal for Android backup files into a SQLite database, preferences and attachments.",
    author="vercingetorx",
    python_requires=">=3.8",
    install_requires=[
        "pycryptodomex>=3.23.0",
        "protobuf>=4.22",
    ],
    entry_points={
        "console_scripts": [
            "sigbackup=sigbackup.cli:main",
        ]
    },
)
