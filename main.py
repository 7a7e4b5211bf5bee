"""
VoiceMatch - Main Entry Point

Example usage:
    python main.py compare reference.wav attempt.m4a
    python main.py --config config/config.yaml serve
"""

from voicematch.cli import main

if __name__ == "__main__":
    main()
