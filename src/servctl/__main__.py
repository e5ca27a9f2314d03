"""Entry point for ``python -m servctl docker|ftp ...``."""

import sys

from .cli import docker_main, ftp_main


def main() -> int:
    args = sys.argv[1:]
    if not args or args[0] not in ("docker", "ftp"):
        print("usage: python -m servctl {docker,ftp} [command] [options]", file=sys.stderr)
        return 1
    if args[0] == "docker":
        return docker_main(args[1:])
    return ftp_main(args[1:])


if __name__ == "__main__":
    sys.exit(main())
