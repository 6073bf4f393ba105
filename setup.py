from setuptools import setup, find_packages

setup(
    name="voicememo",
    version="0.1.0",
    description="Voice memo recorder with on-device long-form Whisper transcription",
    author="",
    python_requires=">=3.9",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pyaudio>=0.2.11",
        "numpy>=1.21.0",
        "rich>=12.5.0",
        "pyyaml>=6.0.0",
        "pypubsub>=4.0.3",
        "pydub>=0.25.1",
        "audioop-lts>=0.2.1; python_version>='3.13'",
        "faster-whisper>=1.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "voicememo=voicememo.main:main",
        ],
    },
)
