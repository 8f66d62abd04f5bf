"""Entry point for running as module: python -m tang"""

from tang.cli import main


if __name__ == "__main__":
    main()
