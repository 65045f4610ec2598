#!/usr/bin/env python3
"""
Box-office Revenue Pipeline Runner

Simple script to execute the revenue pipeline with common configurations.
"""

from boxoffice.data_prep import main

if __name__ == "__main__":
    main()
