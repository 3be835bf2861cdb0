#!/usr/bin/env python3
"""
Main execution module for the Matrix account migration tool
"""

from matrix_migrator.cli.commands import main

if __name__ == "__main__":
    main()
