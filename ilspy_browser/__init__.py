"""
ilspy-browser: browse the member hierarchy of .NET assemblies and read
decompiled source, backed by a supervised decompiler engine process.
"""

__version__ = "0.1.0"
