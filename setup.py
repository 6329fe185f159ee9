import setuptools

setuptools.setup(
    name="dicepmf",
    version="0.0.0",
    classifiers=["Programming Language :: Python :: 3"],
    packages=setuptools.find_namespace_packages(include=["dicepmf", "dicepmf.*"]),
    package_data={"dicepmf": ["settings.default.yaml"]},
    install_requires=["pyyaml"],
    extras_require={"test": ["pytest"]},
)
