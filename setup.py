import setuptools
from pathlib import Path

README = (Path(__file__).parent/"README.md").read_text()

setuptools.setup(
    name="AuthProbe",
    version="0.1.0",
    description="Test an OAuth2 Authorization Code login against an identity provider",
    long_description=README,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(include=["AuthProbe", "AuthProbe.*"]),
    include_package_data=True,
    classifiers=[],
    python_requires=">=3.9",
    install_requires=[
        "Authlib>=1.3.0",
        "requests>=2.31.0",
        "python-decouple>=3.8",
        "redis_collections>=0.12.0",
        "redis>=4.5.0",
        "Flask>=2.3.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": ["authprobe=AuthProbe.app:main"],
    },
)
