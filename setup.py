from setuptools import setup

setup(
    name="backgammon-vision-api",
    version="1.0.0",
    description="Backgammon Board Detection API",
    py_modules=[
        "backgammon_api",
        "board_detection",
        "config",
        "game_logic",
        "move_log",
    ],
    install_requires=[
        "fastapi",
        "uvicorn[standard]",
        "python-multipart",
        "opencv-python-headless",
        "numpy",
        "psutil",
    ],
    extras_require={
        "test": [
            "pytest",
            "httpx",
        ],
    },
    python_requires=">=3.9",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
