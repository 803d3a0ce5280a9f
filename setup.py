from setuptools import setup, find_packages


setup(
    name="vaultzip",
    version="0.1",
    packages=find_packages(exclude=["vaultzip.tests", "vaultzip.tests.*"]),
    description="ZIP containers whose every file entry is individually AEAD-encrypted.",
    author="vaultzip contributors",
    install_requires=[
        "pycryptodomex>=3.23.0",
        "argon2-cffi>=23.1.0",
    ],
    entry_points={
        "console_scripts": [
            "vaultzip=vaultzip.cli:main",
        ]
    },
)
