from setuptools import setup, find_packages

setup(
    name='pulsescan',
    version='0.1.0',
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        'aiohttp>=3.9,<4',
        'yarl>=1.9',
        'pydantic>=2.5,<3',
        'opencv-python>=4.6,<5',
        'numpy>=1.24',
        'quart>=0.19',
        'quart-schema>=0.19',
    ],
    extras_require={
        "test": ["pytest>=7"],
    },
    python_requires='>=3.9',
    description='pulsescan is a commandline and kiosk client for camera based pulse measurement and food scanning.',
    entry_points={
        'console_scripts': [
            'pulsescan = pulsescan.pulsescan:cmdline',
            'pulsescan-kiosk = pulsescan.kiosk:cmdline',
        ],
    },
)
