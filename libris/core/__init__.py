#!/usr/bin/env python

"""
    Core module for Libris: persistence and the loan/fine workflow

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""
