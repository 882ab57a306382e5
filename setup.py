import setuptools

setuptools.setup(
    name="regdigest",
    version="0.1.0",
    description="Container registry auth negotiation and manifest digest checks",
    packages=setuptools.find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "requests>=2.25",
        "ruamel.yaml>=0.17",
        "docker>=5.0",
    ],
    extras_require={
        "test": ["pytest"],
    },
    python_requires=">=3.8",
    entry_points={
        "console_scripts": [
            "regdigest = regdigest.__main__:main",
        ],
    },
)
