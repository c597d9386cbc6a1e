#!/usr/bin/env python3
"""
extract-peptides CLI entry point.

This module serves as the entry point for the extract-peptides command-line
interface. The actual CLI implementation is in the extract_peptides_cli package.
"""

from extract_peptides_cli import main

if __name__ == "__main__":
    main()
