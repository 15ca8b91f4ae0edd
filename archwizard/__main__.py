# archwizard/__main__.py
from archwizard.cli import app


def main():
    """
    Main application
    """
    app(prog_name="archwizard")


if __name__ == "__main__":
    main()
