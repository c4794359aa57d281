import re
from pathlib import Path

from setuptools import setup

install_requires = [
    "aiohttp>=3.9,<4.0",
    "multidict>=4.5,<7.0",
    "yarl>=1.9,<2.0",
    "prometheus-client>=0.17",
]

tests_require = [
    "pytest>=8.0",
    "pytest-aiohttp>=1.0",
    "pytest-asyncio>=0.23",
]


def read(*parts):
    return Path(__file__).resolve().parent.joinpath(*parts).read_text().strip()


def read_version():
    regexp = re.compile(r"^__version__\W*=\W*\"([\d.abrc]+)\"")
    for line in read("aio_exchange", "__init__.py").splitlines():
        match = regexp.match(line)
        if match is not None:
            return match.group(1)
    else:
        raise RuntimeError("Cannot find version in aio_exchange/__init__.py")


with open("README.md", "r") as fh:
    long_description = fh.read()


setup(
    name="aio-exchange",
    version=read_version(),
    description="Executes REST, GraphQL and WebSocket requests and captures uniform responses",
    long_description=long_description,
    long_description_content_type="text/markdown",
    platforms=["macOS", "POSIX", "Windows"],
    python_requires=">=3.11",
    project_urls={},
    license="MIT",
    packages=["aio_exchange"],
    package_dir={"aio_exchange": "./aio_exchange"},
    package_data={"aio_exchange": ["py.typed"]},
    install_requires=install_requires,
    extras_require={"test": tests_require},
    include_package_data=True,
)
