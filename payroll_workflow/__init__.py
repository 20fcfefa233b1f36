"""
Payroll Workflow

Multi-level payroll approval workflow with a statutory deduction engine.
"""

__version__ = "0.1.0"
