"""Entry point for running aibox as a module.

This allows running: python -m aibox
"""

from .cli import main

if __name__ == "__main__":
    main()
