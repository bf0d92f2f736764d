"""
rkeplan/cli/rkeplanctl.py

Top-level dispatcher: `rkeplanctl <subcommand> [args...]` runs
`python -m rkeplan.cli.<subcommand> [args...]`.
"""

import subprocess
import sys

SUBCOMMANDS = ("render", "plan")


def main() -> None:
    if len(sys.argv) < 2 or sys.argv[1] in ("-h", "--help"):
        print(f"Usage: rkeplanctl <{'|'.join(SUBCOMMANDS)}> [args...]")
        sys.exit(1)

    subcommand = sys.argv[1]
    if subcommand not in SUBCOMMANDS:
        print(f"Error: unknown subcommand '{subcommand}'", file=sys.stderr)
        sys.exit(1)

    cmd = [sys.executable, "-m", f"rkeplan.cli.{subcommand}"] + sys.argv[2:]
    sys.exit(subprocess.call(cmd))


if __name__ == "__main__":
    main()
