#!/usr/bin/env python3
"""Backup runner"""
from keepsafe.cli import main

if __name__ == '__main__':
    main(prog_name='keepsafe')
