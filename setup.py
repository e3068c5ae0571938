from setuptools import setup, find_packages

setup(
    name="wow_asset_decoder",
    version="0.1.0",
    description="Read-only decoders for WoW BLP textures, ADT terrain tiles and WMO world models",
    packages=find_packages(include=['wow_asset_decoder', 'wow_asset_decoder.*']),
    install_requires=[
        "numpy>=1.20.0",
        "Pillow>=9.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
    },
    python_requires=">=3.8",
    entry_points={
        "console_scripts": [
            "decode-assets=wow_asset_decoder.main:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Topic :: Games/Entertainment",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
)
