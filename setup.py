from pathlib import Path

from setuptools import find_packages, setup

# Load packages from requirements.txt
BASE_DIR = Path(__file__).parent
with open(Path(BASE_DIR, "requirements.txt")) as file:
    required_packages = [ln.strip() for ln in file.readlines() if ln.strip() and not ln.startswith("#")]

# Define our package
setup(
    name="sopcoach",
    version="0.1.0",
    description="Retrieval-augmented SOP training assistant with streaming answers and adaptive quizzes",
    python_requires=">=3.10",
    packages=find_packages(include=["sopcoach", "sopcoach.*"]),
    install_requires=required_packages,
    extras_require={
        "test": ["pytest>=7.0"],
        "dev": ["pytest>=7.0", "pre-commit==2.19.0"],
    },
    entry_points={
        "console_scripts": ["sopcoach=sopcoach.run:main"],
    },
)
