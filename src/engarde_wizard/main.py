"""CLI main entry point."""

from .commands.wizard import wizard


def main() -> None:
    """Main entry point."""
    wizard(prog_name="engarde-wizard")


if __name__ == "__main__":
    main()
