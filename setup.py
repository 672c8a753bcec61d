from setuptools import find_packages, setup

from machopatch import __url__, __version__

setup(
    name="machopatch",
    version=__version__,
    description="Mach-O load command editor",
    author="machopatch contributors",
    url=__url__,
    packages=find_packages(exclude=["tests"]),
    install_requires=["more_itertools"],
    extras_require={
        "test": ["pytest", "pytest-xdist"],
        "dev": ["invoke", "mypy", "autoflake", "isort", "black", "flake8"],
    },
    package_data={"machopatch": ["py.typed"]},
    entry_points={"console_scripts": ["machopatch-add-rpath=machopatch.cli.add_rpath:main"]},
)
