from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="ftadmit",
    version="0.1.0",
    description=(
        "Fault-tolerant admission control with shared backup bandwidth "
        "for fat-tree datacenters."
    ),
    long_description=long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    packages=find_packages(exclude=("tests", "tests.*")),
    package_data={"ftadmit.schemas": ["scenario.json"]},
    python_requires=">=3.10",
    install_requires=[
        "networkx",
        "pandas",
        "pyyaml",
        "jsonschema",
    ],
    extras_require={"test": ["pytest"]},
    entry_points={"console_scripts": ["ftadmit=ftadmit.cli:main"]},
)
