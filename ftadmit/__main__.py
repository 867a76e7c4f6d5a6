"""Module entry point for ``python -m ftadmit``."""

from ftadmit.cli import main

if __name__ == "__main__":
    main()
