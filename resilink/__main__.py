"""Main entry point when executing resilink as a package.

This allows running the package using python -m resilink.
"""

from resilink.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
