"""
Setup script for the Food Delivery Warehouse pipeline.
"""

from setuptools import setup, find_namespace_packages

# Read the README file
def read_readme():
    with open("README.md", "r", encoding="utf-8") as fh:
        return fh.read()

# Read requirements
def read_requirements():
    with open("requirements.txt", "r", encoding="utf-8") as fh:
        return [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="food-delivery-dw",
    version="1.0.0",
    author="Data Engineering Team",
    author_email="data-engineering@company.com",
    description="Food delivery dimensional warehouse on Delta Lake: stage, clean, SCD Type 2 dimensions and order item facts",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    packages=find_namespace_packages(where="src", include=["libraries.*"]),
    package_dir={"": "src"},
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Operating System :: POSIX",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Database",
        "Topic :: Scientific/Engineering :: Information Analysis",
    ],
    python_requires=">=3.9",
    install_requires=read_requirements(),
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "pytest-mock>=3.10.0",
            "flake8>=6.0.0",
            "black>=23.0.0",
            "mypy>=1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "food-delivery-dw=libraries.food_delivery_dw.cli:main",
        ],
    },
    include_package_data=True,
    zip_safe=False,
    keywords="spark, delta, scd, dimensional, data-engineering, etl",
)
