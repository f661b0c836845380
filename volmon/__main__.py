"""Allow ``python -m volmon`` to launch the volume monitor."""

from __future__ import annotations

import sys


def main() -> None:
    from volmon import run
    sys.exit(run(sys.argv[1:]))


if __name__ == "__main__":
    main()
