"""Allow ``python -m respawn``."""

from respawn.main import run

if __name__ == "__main__":
    run()
