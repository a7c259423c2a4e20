"""
Точка входа для запуска через python -m obligation_tracker
"""
import sys

from obligation_tracker.app import main

if __name__ == "__main__":
    sys.exit(main())
