"""Allow ``python -m fxreconcile``."""

from fxreconcile.cli import main

if __name__ == "__main__":
    main()
