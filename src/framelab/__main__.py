"""Allow ``python -m framelab``."""

from .cli import main

if __name__ == "__main__":
    main()
