"""
Setup script for shelly-scrape - Shelly power monitoring collector
"""

from setuptools import setup, find_packages

# Read requirements from requirements.txt
def read_requirements():
    try:
        with open('requirements.txt', 'r') as f:
            return [line.strip() for line in f if line.strip() and not line.startswith('#')]
    except FileNotFoundError:
        return ["requests>=2.25.0", "urllib3>=1.26", "PyYAML>=5.4"]

setup(
    name="shelly-scrape",
    version="0.1.0",
    description="Scrape data from Shelly power monitoring and push to InfluxDB",
    long_description="Discovers Shelly devices on a local network with nmap, polls their "
                     "metering data over HTTP and forwards readings to InfluxDB.",
    packages=find_packages(include=['shelly_scrape', 'shelly_scrape.*']),
    package_data={
        'shelly_scrape': ['signatures.yaml'],
    },
    include_package_data=True,
    install_requires=read_requirements(),
    extras_require={
        "dev": [
            "pytest>=6.0",
        ],
    },
    entry_points={
        'console_scripts': [
            'shelly-scrape=shelly_scrape.cli:main',
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.9",
)
