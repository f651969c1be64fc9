from setuptools import setup, find_packages


setup(
    name="wadforge",
    version="0.1",
    packages=find_packages(include=["wadforge", "wadforge.*"]),
    description="Reader, writer and extractor for chunk-indexed game asset archives.",
    author="vercingetorx",
    python_requires=">=3.8",
    install_requires=[
        "zstandard>=0.22.0",
        "xxhash>=3.4.1",
        "pycryptodomex>=3.23.0",
    ],
)
