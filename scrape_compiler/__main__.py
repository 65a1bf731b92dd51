#!/usr/bin/env python3
"""
Main entry point for running the scrape configuration compiler as a module.

Usage:
    python3 -m scrape_compiler compile -f scrapes.yaml --owner default/vmagent
    python3 -m scrape_compiler validate -f scrapes.yaml
"""

from .cli import main

if __name__ == "__main__":
    main()
