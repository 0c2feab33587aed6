"""
WatchX Command Line Package.

Argument parsing and the watch session loop.
Requires Python 3.11+.
"""

# Use: from cli.main import main
