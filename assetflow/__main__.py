"""Entry point for the Assetflow CLI.

Running ``python -m assetflow`` is equivalent to the ``assetflow`` command.
"""

from .cli import main

if __name__ == "__main__":  # pragma: no cover
    main()
