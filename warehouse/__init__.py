"""
Sales Warehouse Pipeline

Consolidates CRM and ERP extracts into a star schema.
"""
__version__ = "1.0.0"
