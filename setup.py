# setup.py
from setuptools import setup, find_namespace_packages

setup(
    name="cerealhunter",
    version="0.1.0",
    description="Deserialization call-site hunter for .NET assemblies",
    author="Enrique Paredes",
    author_email="eparedesbalen@gmail.com",
    package_dir={"": "src"},
    packages=find_namespace_packages(where="src", include=["cerealhunter", "cerealhunter.*"]),
    python_requires=">=3.8",
    install_requires=[
        "dnfile",  # .NET metadata tables and heaps
        "dncil",  # CIL method body decoding
        "pefile",  # PE header pre-filter
        "psutil",  # mounted volume enumeration
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        'console_scripts': [
            'cerealhunter=cerealhunter.main:main',
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)
