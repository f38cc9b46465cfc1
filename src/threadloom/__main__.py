"""Allow ``python -m threadloom``."""

from .app import main

if __name__ == "__main__":
    main()
