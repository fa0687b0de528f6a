"""Measure Compiler: compiles Universal Measure Specification trees to CQL and T-SQL."""

__version__ = "0.1.0"
