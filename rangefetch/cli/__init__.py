"""
Command-line interface: Typer commands, Rich progress and formatting.
"""
